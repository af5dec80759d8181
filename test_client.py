#!/usr/bin/env python3
"""Unit tests for the OData HTTP client: catalog, $metadata and query execution."""

import unittest
from io import StringIO
from unittest.mock import AsyncMock, MagicMock, patch
import requests

from d365_odata_lib import CatalogEntry, FetchFailure, ODataClient, QueryPlan, ServiceConfig
from d365_odata_lib.client import encode_query_params
from metadata_fixture import METADATA_V4

RESOURCE = "https://contoso.operations.dynamics.com"


def make_response(status_code=200, json_data=None, text='', content=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.reason = "Error" if status_code >= 400 else "OK"
    response.text = text
    response.content = content if content is not None else text.encode('utf-8')
    if json_data is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = json_data
    return response


class TestEncodeQueryParams(unittest.TestCase):

    def test_spaces_become_percent_20(self):
        encoded = encode_query_params({'$filter': "dataAreaId eq 'usmf'", '$top': 5})
        self.assertEqual(encoded, "$filter=dataAreaId%20eq%20%27usmf%27&$top=5")

    def test_dollar_sign_is_kept(self):
        self.assertEqual(encode_query_params({'$select': 'A,B'}), "$select=A%2CB")


class TestODataClient(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.config = ServiceConfig(
            tenant_id="tenant",
            client_id="client",
            client_secret="secret",
            resource_url=RESOURCE
        )
        self.credentials = MagicMock()
        self.credentials.get_token = AsyncMock(return_value="tok-1")
        self.session = requests.Session()
        self.session.request = MagicMock()
        self.client = ODataClient(self.config, self.credentials, session=self.session)

    def last_call(self):
        args, kwargs = self.session.request.call_args
        return args[0], args[1], kwargs

    async def test_fetch_catalog(self):
        self.session.request.return_value = make_response(json_data={
            "@odata.context": f"{RESOURCE}/data/$metadata",
            "value": [
                {"name": "CustomersV3", "kind": "EntitySet", "url": "CustomersV3"},
                {"name": "Released products", "url": "ReleasedProductsV2"},
                {"name": "SystemUsers"},
                {"kind": "EntitySet"},
            ]
        })

        entries = await self.client.fetch_catalog()

        self.assertEqual(entries, [
            CatalogEntry(logical_name="CustomersV3", canonical_name="CustomersV3"),
            CatalogEntry(logical_name="Released products", canonical_name="ReleasedProductsV2"),
            CatalogEntry(logical_name="SystemUsers", canonical_name="SystemUsers"),
        ])
        method, url, kwargs = self.last_call()
        self.assertEqual(method, 'GET')
        self.assertEqual(url, f"{RESOURCE}/data")
        self.assertEqual(kwargs['headers']['Authorization'], "Bearer tok-1")
        self.assertEqual(kwargs['headers']['OData-Version'], "4.0")
        self.assertEqual(kwargs['timeout'], 30)

    async def test_fetch_catalog_http_error(self):
        self.session.request.return_value = make_response(
            status_code=401,
            json_data={"error": {"code": "Unauthorized", "message": "Token expired"}}
        )
        with self.assertRaises(FetchFailure) as ctx:
            await self.client.fetch_catalog()
        self.assertIn("Unauthorized: Token expired", str(ctx.exception))

    async def test_fetch_catalog_network_error(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError("Connection refused")
        with self.assertRaises(FetchFailure):
            await self.client.fetch_catalog()

    async def test_fetch_catalog_malformed(self):
        self.session.request.return_value = make_response(json_data={"items": []})
        with self.assertRaises(FetchFailure):
            await self.client.fetch_catalog()

        self.session.request.return_value = make_response(text="<html>maintenance</html>")
        with self.assertRaises(FetchFailure):
            await self.client.fetch_catalog()

    async def test_fetch_metadata(self):
        self.session.request.return_value = make_response(content=METADATA_V4)

        content = await self.client.fetch_metadata()

        self.assertEqual(content, METADATA_V4)
        method, url, kwargs = self.last_call()
        self.assertEqual(url, f"{RESOURCE}/data/$metadata")
        self.assertEqual(kwargs['headers']['Accept'], "application/xml")

    async def test_fetch_metadata_failures(self):
        self.session.request.return_value = make_response(status_code=503, text="Service Unavailable")
        with self.assertRaises(FetchFailure) as ctx:
            await self.client.fetch_metadata()
        self.assertIn("503", str(ctx.exception))

        self.session.request.return_value = make_response(content=b'')
        with self.assertRaises(FetchFailure):
            await self.client.fetch_metadata()

    async def test_execute_encodes_params(self):
        self.session.request.return_value = make_response(json_data={"value": [{"CustomerAccount": "US-001"}]})
        plan = QueryPlan(
            entity_set="CustomersV3",
            url=f"{RESOURCE}/data/CustomersV3",
            params={"cross-company": "true", "$filter": "dataAreaId eq 'usmf'"},
            filter="dataAreaId eq 'usmf'"
        )

        result = await self.client.execute(plan)

        self.assertEqual(result, {"value": [{"CustomerAccount": "US-001"}]})
        _, url, kwargs = self.last_call()
        self.assertEqual(
            url,
            f"{RESOURCE}/data/CustomersV3?cross-company=true&$filter=dataAreaId%20eq%20%27usmf%27"
        )
        self.assertNotIn('params', kwargs)

    async def test_execute_count(self):
        self.session.request.return_value = make_response(text="\ufeff42\n")
        plan = QueryPlan(entity_set="CustomersV3", url=f"{RESOURCE}/data/CustomersV3/$count", count=True)
        self.assertEqual(await self.client.execute(plan), 42)

    async def test_execute_error(self):
        self.session.request.return_value = make_response(
            status_code=400,
            json_data={"error": {"message": {"lang": "en-US", "value": "Invalid filter"}}}
        )
        plan = QueryPlan(entity_set="CustomersV3", url=f"{RESOURCE}/data/CustomersV3")

        with patch('sys.stderr', new_callable=StringIO) as stderr:
            with self.assertRaises(requests.exceptions.RequestException) as ctx:
                await self.client.execute(plan)
        self.assertIn("Invalid filter", str(ctx.exception))
        self.assertIn("ERROR", stderr.getvalue())

    async def test_execute_no_content(self):
        self.session.request.return_value = make_response(status_code=204)
        plan = QueryPlan(entity_set="CustomersV3", url=f"{RESOURCE}/data/CustomersV3")
        self.assertIn("message", await self.client.execute(plan))

    async def test_token_requested_per_call(self):
        self.session.request.return_value = make_response(content=METADATA_V4)
        await self.client.fetch_metadata()
        await self.client.fetch_metadata()
        self.assertEqual(self.credentials.get_token.await_count, 2)


if __name__ == '__main__':
    unittest.main()
