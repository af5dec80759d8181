#!/usr/bin/env python3
"""Unit tests for entity catalog loading and fuzzy entity name resolution."""

import asyncio
import unittest
from io import StringIO
from unittest.mock import patch

from d365_odata_lib import CatalogEntry, EntityCatalog, FetchFailure
from d365_odata_lib.entity_catalog import name_distance, normalize_name
from metadata_fixture import CATALOG, GatedFetcher


class TestNameDistance(unittest.TestCase):

    def test_normalize(self):
        self.assertEqual(normalize_name("Customers V3"), "customersv3")
        self.assertEqual(normalize_name("released_products-v2"), "releasedproductsv2")

    def test_identical_after_normalization(self):
        self.assertEqual(name_distance("CustomersV3", "customers v3"), 0.0)

    def test_range(self):
        d = name_distance("customer", "CustomersV3")
        self.assertGreater(d, 0.0)
        self.assertLess(d, 0.2)
        self.assertEqual(name_distance("", "CustomersV3"), 1.0)


class TestEntityCatalog(unittest.IsolatedAsyncioTestCase):
    """Resolution against a sample D365 catalog."""

    def setUp(self):
        self.fetcher = GatedFetcher(list(CATALOG))
        self.catalog = EntityCatalog(self.fetcher)

    async def test_resolves_loose_name(self):
        self.assertEqual(await self.catalog.resolve("customer"), "CustomersV3")
        self.assertEqual(await self.catalog.resolve("purchase order headers"), "PurchaseOrderHeadersV2")
        self.assertEqual(await self.catalog.resolve("system users"), "SystemUsers")

    async def test_rejects_unrelated_name(self):
        self.assertIsNone(await self.catalog.resolve("zzznotreal"))

    async def test_self_match_is_exact(self):
        for entry in CATALOG:
            self.assertEqual(await self.catalog.resolve(entry.canonical_name), entry.canonical_name)

    async def test_blank_name_is_not_found(self):
        self.assertIsNone(await self.catalog.resolve(""))
        self.assertIsNone(await self.catalog.resolve("   "))
        self.assertIsNone(await self.catalog.resolve("!!!"))

    async def test_catalog_fetched_once(self):
        await self.catalog.resolve("customer")
        await self.catalog.resolve("vendors")
        await self.catalog.resolve("zzznotreal")
        self.assertEqual(self.fetcher.calls, 1)

    async def test_concurrent_resolves_share_one_fetch(self):
        gate = self.fetcher.hold()
        tasks = [
            asyncio.create_task(self.catalog.resolve(name))
            for name in ("customer", "vendors", "released products", "customer")
        ]
        await asyncio.sleep(0)
        self.assertFalse(any(t.done() for t in tasks))

        gate.set()
        results = await asyncio.gather(*tasks)

        self.assertEqual(results, ["CustomersV3", "VendorsV2", "ReleasedProductsV2", "CustomersV3"])
        self.assertEqual(self.fetcher.calls, 1)

    async def test_cancelled_caller_does_not_cancel_shared_fetch(self):
        gate = self.fetcher.hold()
        cancelled = asyncio.create_task(self.catalog.resolve("customer"))
        survivor = asyncio.create_task(self.catalog.resolve("vendors"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        cancelled.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await cancelled
        gate.set()

        self.assertEqual(await survivor, "VendorsV2")
        self.assertEqual(self.fetcher.calls, 1)
        self.assertTrue(self.catalog.is_loaded)

    async def test_reset_during_fetch_is_not_undone(self):
        gate = self.fetcher.hold()
        pending = asyncio.create_task(self.catalog.resolve("customer"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        self.catalog.reset()
        gate.set()

        # The caller already waiting still gets an answer, but nothing is cached
        self.assertEqual(await pending, "CustomersV3")
        self.assertFalse(self.catalog.is_loaded)
        await self.catalog.resolve("customer")
        self.assertEqual(self.fetcher.calls, 2)

    async def test_fetch_failure_is_not_found_and_retried(self):
        fetcher = GatedFetcher(FetchFailure("HTTP 503"), list(CATALOG))
        catalog = EntityCatalog(fetcher)

        with patch('sys.stderr', new_callable=StringIO) as stderr:
            self.assertIsNone(await catalog.resolve("customer"))
        self.assertIn("ERROR", stderr.getvalue())
        self.assertFalse(catalog.is_loaded)

        self.assertEqual(await catalog.resolve("customer"), "CustomersV3")
        self.assertEqual(fetcher.calls, 2)

    async def test_empty_catalog_is_kept(self):
        fetcher = GatedFetcher([])
        catalog = EntityCatalog(fetcher)
        self.assertIsNone(await catalog.resolve("customer"))
        self.assertIsNone(await catalog.resolve("customer"))
        self.assertTrue(catalog.is_loaded)
        self.assertEqual(fetcher.calls, 1)

    async def test_matches_logical_name(self):
        entries = [
            CatalogEntry(logical_name="Released products V2", canonical_name="ReleasedProductsV2"),
            CatalogEntry(logical_name="Customers V3", canonical_name="CustomersV3"),
        ]
        catalog = EntityCatalog(GatedFetcher(entries))
        self.assertEqual(await catalog.resolve("released products"), "ReleasedProductsV2")

    async def test_ties_go_to_first_entry(self):
        entries = [
            CatalogEntry(logical_name="OrdersA", canonical_name="OrdersA"),
            CatalogEntry(logical_name="OrdersB", canonical_name="OrdersB"),
        ]
        self.assertEqual(await EntityCatalog(GatedFetcher(entries)).resolve("orders"), "OrdersA")
        self.assertEqual(await EntityCatalog(GatedFetcher(list(reversed(entries)))).resolve("orders"), "OrdersB")

    async def test_threshold_controls_acceptance(self):
        strict = EntityCatalog(GatedFetcher(list(CATALOG)), threshold=0.0)
        self.assertIsNone(await strict.resolve("customer"))
        self.assertEqual(await strict.resolve("customersv3"), "CustomersV3")

    async def test_best_match_reports_score(self):
        entry, score = await self.catalog.best_match("customer")
        self.assertEqual(entry.canonical_name, "CustomersV3")
        self.assertAlmostEqual(score, 1 - 16 / 19)

    async def test_reset_refetches(self):
        await self.catalog.resolve("customer")
        self.catalog.reset()
        self.assertFalse(self.catalog.is_loaded)
        await self.catalog.resolve("customer")
        self.assertEqual(self.fetcher.calls, 2)


if __name__ == '__main__':
    unittest.main()
