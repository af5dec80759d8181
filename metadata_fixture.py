"""
Shared sample data for the unit tests: a trimmed D365 $metadata document and entity catalog.
"""

import asyncio

from d365_odata_lib.models import CatalogEntry

METADATA_V4 = b"""<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="4.0" xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx">
  <edmx:DataServices>
    <Schema Namespace="Microsoft.Dynamics.DataEntities" Alias="mdde" xmlns="http://docs.oasis-open.org/odata/ns/edm">
      <EntityType Name="CustomerV3">
        <Key>
          <PropertyRef Name="dataAreaId" />
          <PropertyRef Name="CustomerAccount" />
        </Key>
        <Property Name="dataAreaId" Type="Edm.String" Nullable="false" />
        <Property Name="CustomerAccount" Type="Edm.String" Nullable="false" />
        <Property Name="CreditLimit" Type="Edm.Decimal" />
        <Property Name="CustomerGroupId" Type="Edm.String" />
      </EntityType>
      <EntityType Name="PurchaseOrderHeaderV2">
        <Key>
          <PropertyRef Name="dataAreaId" />
          <PropertyRef Name="PurchaseOrderNumber" />
        </Key>
        <Property Name="dataAreaId" Type="Edm.String" Nullable="false" />
        <Property Name="PurchaseOrderNumber" Type="Edm.String" Nullable="false" />
        <Property Name="PurchaseOrderStatus" Type="Microsoft.Dynamics.DataEntities.PurchStatus" />
        <Property Name="DocumentApprovalStatus" Type="mdde.VersioningDocumentState" />
        <Property Name="OrderVendorAccountNumber" Type="Edm.String" />
      </EntityType>
      <EntityType Name="Warehouse">
        <Key>
          <PropertyRef Name="WarehouseId" />
        </Key>
        <Property Name="WarehouseId" Type="Edm.String" Nullable="false" />
        <Property Name="WarehouseName" Type="Edm.String" />
      </EntityType>
      <EnumType Name="PurchStatus">
        <Member Name="None" Value="0" />
        <Member Name="Backorder" Value="1" />
        <Member Name="Received" Value="2" />
        <Member Name="Invoiced" Value="3" />
        <Member Name="Canceled" Value="4" />
      </EnumType>
      <EntityContainer Name="Resources">
        <EntitySet Name="CustomersV3" EntityType="Microsoft.Dynamics.DataEntities.CustomerV3" />
        <EntitySet Name="PurchaseOrderHeadersV2" EntityType="mdde.PurchaseOrderHeaderV2" />
        <EntitySet Name="LegacyVendors" EntityType="Microsoft.Dynamics.DataEntities.LegacyVendor" />
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

METADATA_V2 = b"""<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx">
  <edmx:DataServices>
    <Schema Namespace="ODataDemo" xmlns="http://schemas.microsoft.com/ado/2008/09/edm">
      <EntityType Name="Product">
        <Key>
          <PropertyRef Name="ID" />
        </Key>
        <Property Name="ID" Type="Edm.Int32" Nullable="false" />
        <Property Name="Name" Type="Edm.String" />
      </EntityType>
      <EntityContainer Name="DemoService">
        <EntitySet Name="Products" EntityType="ODataDemo.Product" />
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

CATALOG = [
    CatalogEntry(logical_name='CustomersV3', canonical_name='CustomersV3'),
    CatalogEntry(logical_name='ReleasedProductsV2', canonical_name='ReleasedProductsV2'),
    CatalogEntry(logical_name='PurchaseOrderHeadersV2', canonical_name='PurchaseOrderHeadersV2'),
    CatalogEntry(logical_name='SalesOrderHeadersV2', canonical_name='SalesOrderHeadersV2'),
    CatalogEntry(logical_name='VendorsV2', canonical_name='VendorsV2'),
    CatalogEntry(logical_name='SystemUsers', canonical_name='SystemUsers'),
    CatalogEntry(logical_name='SecurityUserRoleAssociations', canonical_name='SecurityUserRoleAssociations'),
    CatalogEntry(logical_name='PositionHierarchies', canonical_name='PositionHierarchies'),
]


class GatedFetcher:
    """Async fetch stub that counts calls and can be held open until released."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0
        self.gate = None

    def hold(self):
        self.gate = asyncio.Event()
        return self.gate

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result
