from __future__ import annotations

import threading
import unittest
from unittest import mock

import requests

from oc_consolidator.errors import RecordValidationError, TransportError
from oc_consolidator.models import ConsolidatedRecord, DetailRecord, ItemResult
from oc_consolidator.reference import AccountCategory, CostCenter, ReferenceData
from oc_consolidator.upsert import (
    CANCELLED_MESSAGE,
    NO_ID_MESSAGE,
    HttpOrderStore,
    Submitter,
    UpsertOrchestrator,
    parse_batch_response,
    validate_record,
)


def make_record(order_number, supplier="Acme", amount=1000.0):
    return ConsolidatedRecord(
        order_number=order_number,
        order_name=f"Orden {order_number}",
        date="2024-03-05",
        cost_center_label="Torre A",
        supplier_name=supplier,
        payment_terms="30 días",
        amount=amount,
        details=[DetailRecord(order_number, "CC-01", "Materiales")],
        cost_center_code="CC-01",
        cost_account_name="Materiales",
    )


class FakeStore(Submitter):
    """In-memory store keyed by order number; existing keys are updates."""

    def __init__(self, existing=(), batch_error=None, reject=(), reference=None, items_error=None):
        self.orders = {key: index + 1 for index, key in enumerate(existing)}
        self.batch_error = batch_error
        self.reject = set(reject)
        self.reference = reference or ReferenceData()
        self.items_error = items_error
        self.batch_calls = 0
        self.single_calls = []
        self.sent = []
        self.item_calls = []

    def fetch_reference_data(self):
        return self.reference

    def submit_items(self, order_id, items):
        if self.items_error:
            raise self.items_error
        self.item_calls.append((order_id, items))
        return len(items)

    def _store(self, payload):
        self.sent.append(payload)
        key = payload["poNumber"]
        if key in self.reject:
            return ItemResult(success=False, error_message=f"proveedor inválido para {key}")
        if key in self.orders:
            return ItemResult(success=True, created=False, entity_id=self.orders[key])
        self.orders[key] = len(self.orders) + 1
        return ItemResult(success=True, created=True, entity_id=self.orders[key])

    def submit_batch(self, payloads):
        self.batch_calls += 1
        if self.batch_error:
            raise self.batch_error
        return [self._store(payload) for payload in payloads]

    def submit_one(self, payload):
        self.single_calls.append(payload["poNumber"])
        return self._store(payload)


class ValidateRecordTests(unittest.TestCase):
    def test_messages(self):
        with self.assertRaisesRegex(RecordValidationError, "order number is empty"):
            validate_record(make_record("  "))
        with self.assertRaisesRegex(RecordValidationError, "supplier name is empty"):
            validate_record(make_record("OC-1", supplier=""))
        with self.assertRaisesRegex(RecordValidationError, r"greater than 0 \(got -5\)"):
            validate_record(make_record("OC-1", amount=-5.0))

    def test_valid_record_passes(self):
        self.assertIsNone(validate_record(make_record("OC-1")))


class OrchestratorTests(unittest.TestCase):
    def test_batch_creates_and_updates(self):
        store = FakeStore(existing=["OC-2"])
        outcome = UpsertOrchestrator(store).submit([make_record("OC-1"), make_record("OC-2")])

        self.assertEqual(store.batch_calls, 1)
        self.assertEqual(store.single_calls, [])
        self.assertFalse(outcome.used_fallback)
        self.assertEqual([item.result_kind for item in outcome.outcomes], ["created", "updated"])
        self.assertEqual((outcome.created, outcome.updated, outcome.failed), (1, 1, 0))

    def test_transport_failure_falls_back_to_individual_calls(self):
        records = [make_record("OC-1"), make_record("OC-2"), make_record("OC-3")]
        store = FakeStore(existing=["OC-2"], batch_error=TransportError("connection refused"))

        with self.assertLogs("oc_consolidator.upsert", level="WARNING"):
            outcome = UpsertOrchestrator(store).submit(records)

        self.assertTrue(outcome.used_fallback)
        self.assertEqual(store.single_calls, ["OC-1", "OC-2", "OC-3"])
        self.assertEqual([item.result_kind for item in outcome.outcomes], ["created", "updated", "created"])

    def test_fallback_matches_batch_results(self):
        records = [make_record("OC-1"), make_record("OC-2"), make_record("OC-3")]
        batch = UpsertOrchestrator(FakeStore(existing=["OC-3"], reject=["OC-2"])).submit(records)
        fallback = UpsertOrchestrator(
            FakeStore(existing=["OC-3"], reject=["OC-2"], batch_error=TransportError("timeout"))
        ).submit(records)

        def summary(outcome):
            return [(item.order_number, item.result_kind, item.error_message) for item in outcome.outcomes]

        self.assertEqual(summary(batch), summary(fallback))

    def test_item_rejection_does_not_trigger_fallback(self):
        store = FakeStore(reject=["OC-2"])
        outcome = UpsertOrchestrator(store).submit([make_record("OC-1"), make_record("OC-2")])

        self.assertFalse(outcome.used_fallback)
        self.assertEqual(store.single_calls, [])
        self.assertEqual(outcome.failed, 1)
        self.assertEqual(outcome.failures[0].error_message, "proveedor inválido para OC-2")

    def test_invalid_records_fail_without_being_sent(self):
        store = FakeStore()
        records = [make_record("OC-1"), make_record("OC-2", supplier=""), make_record("OC-3", amount=0.0)]
        outcome = UpsertOrchestrator(store).submit(records)

        self.assertEqual(sorted(store.orders), ["OC-1"])
        self.assertEqual([item.record_ref for item in outcome.outcomes], [0, 1, 2])
        self.assertEqual([item.result_kind for item in outcome.outcomes], ["created", "failed", "failed"])
        self.assertEqual(outcome.outcomes[1].error_message, "supplier name is empty")

    def test_empty_input(self):
        store = FakeStore()
        outcome = UpsertOrchestrator(store).submit([])
        self.assertEqual(outcome.total, 0)
        self.assertEqual(store.batch_calls, 0)

    def test_result_count_mismatch_is_a_transport_failure(self):
        store = FakeStore()
        store.submit_batch = mock.Mock(return_value=[ItemResult(success=True, created=True)])

        outcome = UpsertOrchestrator(store).submit([make_record("OC-1"), make_record("OC-2")])

        self.assertTrue(outcome.used_fallback)
        self.assertEqual(store.single_calls, ["OC-1", "OC-2"])

    def test_cancelled_before_submission(self):
        cancel = threading.Event()
        cancel.set()
        store = FakeStore()
        outcome = UpsertOrchestrator(store, cancel_event=cancel).submit([make_record("OC-1")])

        self.assertEqual(store.batch_calls, 0)
        self.assertEqual(outcome.failures[0].error_message, CANCELLED_MESSAGE)

    def test_cancel_during_fallback_stops_remaining_orders(self):
        cancel = threading.Event()
        store = FakeStore(batch_error=TransportError("timeout"))
        original = store.submit_one

        def submit_then_cancel(payload):
            cancel.set()
            return original(payload)

        store.submit_one = submit_then_cancel
        outcome = UpsertOrchestrator(store, cancel_event=cancel).submit([make_record("OC-1"), make_record("OC-2")])

        self.assertEqual([item.result_kind for item in outcome.outcomes], ["created", "failed"])
        self.assertEqual(outcome.outcomes[1].error_message, CANCELLED_MESSAGE)


class ReferenceAndItemsTests(unittest.TestCase):
    def test_reference_ids_reach_payloads_and_items(self):
        reference = ReferenceData(
            cost_centers=[CostCenter(3, "Torre A", "TA")],
            account_categories=[AccountCategory(8, "Materiales", "MAT")],
        )
        store = FakeStore(reference=reference)
        UpsertOrchestrator(store).submit([make_record("OC-1")])

        self.assertEqual(store.sent[0]["centroCostoId"], 3)
        self.assertEqual(store.sent[0]["accountCategoryId"], 8)
        order_id, items = store.item_calls[0]
        self.assertEqual(order_id, 1)
        self.assertEqual((items[0]["cost_center_id"], items[0]["account_category_id"]), (3, 8))

    def test_items_are_created_for_created_and_updated_orders(self):
        store = FakeStore(existing=["OC-2"], reject=["OC-3"])
        records = [make_record("OC-1"), make_record("OC-2"), make_record("OC-3")]
        outcome = UpsertOrchestrator(store).submit(records)

        self.assertEqual([order_id for order_id, _ in store.item_calls], [2, 1])
        self.assertEqual(store.item_calls[0][1][0]["total"], 1000.0)
        self.assertEqual(outcome.items_created, 2)
        self.assertEqual(outcome.item_errors, [])

    def test_orders_without_positive_item_totals_send_no_items(self):
        store = FakeStore()
        record = make_record("OC-1", amount=0.4)
        outcome = UpsertOrchestrator(store).submit([record])

        self.assertEqual(outcome.created, 1)
        self.assertEqual(store.item_calls, [])
        self.assertEqual(outcome.items_created, 0)

    def test_item_failures_are_collected_and_do_not_fail_the_order(self):
        store = FakeStore(items_error=TransportError("Item creation failed: cuenta inválida"))
        with self.assertLogs("oc_consolidator.upsert", level="ERROR"):
            outcome = UpsertOrchestrator(store).submit([make_record("OC-1")])

        self.assertEqual(outcome.created, 1)
        self.assertEqual(outcome.failed, 0)
        self.assertEqual(outcome.item_errors, ["OC-1: Item creation failed: cuenta inválida"])

    def test_reference_data_failure_is_not_fatal(self):
        store = FakeStore()
        store.fetch_reference_data = mock.Mock(side_effect=TransportError("GET reference-data failed"))
        with self.assertLogs("oc_consolidator.upsert", level="WARNING") as logs:
            outcome = UpsertOrchestrator(store).submit([make_record("OC-1")])

        self.assertIn("Reference data unavailable", logs.output[0])
        self.assertEqual(outcome.created, 1)
        self.assertNotIn("centroCostoId", store.sent[0])
        self.assertIsNone(store.item_calls[0][1][0]["cost_center_id"])

    def test_no_reference_fetch_when_nothing_is_valid(self):
        store = FakeStore()
        store.fetch_reference_data = mock.Mock()
        UpsertOrchestrator(store).submit([make_record("OC-1", supplier="")])
        store.fetch_reference_data.assert_not_called()


class ParseBatchResponseTests(unittest.TestCase):
    def test_results_list_form(self):
        body = {
            "success": True,
            "data": {
                "results": [
                    {"index": 0, "success": True, "action": "created", "entityId": 10},
                    {"index": 1, "success": True, "action": "updated", "entityId": 4},
                    {"index": 2, "success": False, "errorMessage": "duplicado"},
                ]
            },
        }
        results = parse_batch_response(body, 3)
        self.assertEqual([(r.success, r.created, r.entity_id) for r in results[:2]], [(True, True, 10), (True, False, 4)])
        self.assertEqual(results[2].error_message, "duplicado")

    def test_aggregate_form(self):
        body = {
            "status": "partial_success",
            "data": {
                "ids": [21, 7],
                "errors": [{"index": 1, "item": {"error": "monto inválido"}}],
                "details": {"createdIds": [21], "updatedIds": [7]},
            },
        }
        results = parse_batch_response(body, 3)
        self.assertEqual((results[0].entity_id, results[0].created), (21, True))
        self.assertFalse(results[1].success)
        self.assertEqual(results[1].error_message, "monto inválido")
        self.assertEqual((results[2].entity_id, results[2].created), (7, False))

    def test_missing_results_are_failures(self):
        results = parse_batch_response({"success": True, "data": {"results": []}}, 1)
        self.assertEqual(results[0].error_message, "no result returned for this order")

    def test_reply_without_any_ids_is_a_transport_error(self):
        with self.assertRaisesRegex(TransportError, "no ids"):
            parse_batch_response({"success": True, "data": {"ids": [], "created": 0}}, 2)

    def test_all_rejected_reply_needs_no_ids(self):
        body = {"success": True, "data": {"errors": [{"index": 0, "error": "duplicado"}]}}
        results = parse_batch_response(body, 1)
        self.assertEqual(results[0].error_message, "duplicado")

    def test_success_without_id_is_a_failed_result(self):
        body = {
            "success": True,
            "data": {
                "results": [
                    {"index": 0, "success": True, "action": "created"},
                    {"index": 1, "success": True, "action": "created", "entityId": 5},
                ]
            },
        }
        results = parse_batch_response(body, 2)
        self.assertFalse(results[0].success)
        self.assertEqual(results[0].error_message, NO_ID_MESSAGE)
        self.assertEqual(results[1].entity_id, 5)

    def test_short_ids_list_fails_the_remaining_orders(self):
        results = parse_batch_response({"success": True, "data": {"ids": [4]}}, 2)
        self.assertEqual(results[0].entity_id, 4)
        self.assertEqual(results[1].error_message, NO_ID_MESSAGE)

    def test_unusable_shapes_are_transport_errors(self):
        bodies = [
            {"success": True},
            {"success": True, "data": [5, 6]},
            {"success": True, "data": {"results": {"0": "ok"}}},
            {"success": True, "data": {"results": ["ok"]}},
            {"success": True, "data": {"errors": ["boom"], "ids": [1]}},
            {"success": True, "data": {"errors": "boom", "ids": [1]}},
            {"success": True, "data": {"ids": "1,2"}},
            {"success": True, "data": {"ids": [1, 2], "details": ["x"]}},
            {"success": True, "data": {"ids": [1, 2], "details": {"updatedIds": 2}}},
        ]
        for body in bodies:
            with self.subTest(body=body):
                with self.assertRaisesRegex(TransportError, "unusable"):
                    parse_batch_response(body, 2)


def fake_response(status=200, body=None, json_error=False):
    response = mock.Mock()
    response.status_code = status
    if json_error:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


class HttpOrderStoreTests(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.session.headers = {}
        self.store = HttpOrderStore("http://api.local/api/", token="secreto", timeout=5, session=self.session)

    def test_batch_request_shape(self):
        self.session.post.return_value = fake_response(
            body={"success": True, "data": {"results": [{"index": 0, "success": True, "action": "created", "entityId": 1}]}}
        )
        results = self.store.submit_batch([{"poNumber": "OC-1"}])

        self.session.post.assert_called_once_with(
            "http://api.local/api/ordenes-compra/batch",
            json={"ordenes": [{"poNumber": "OC-1"}]},
            timeout=5,
        )
        self.assertEqual(self.session.headers["Authorization"], "Bearer secreto")
        self.assertTrue(results[0].created)

    def test_connection_error_is_transport_error(self):
        self.session.post.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(TransportError):
            self.store.submit_batch([{"poNumber": "OC-1"}])

    def test_server_error_is_transport_error(self):
        self.session.post.return_value = fake_response(status=502, body={})
        with self.assertRaisesRegex(TransportError, "HTTP 502"):
            self.store.submit_batch([{"poNumber": "OC-1"}])

    def test_non_json_body_is_transport_error(self):
        self.session.post.return_value = fake_response(json_error=True)
        with self.assertRaisesRegex(TransportError, "non-JSON"):
            self.store.submit_batch([{"poNumber": "OC-1"}])

    def test_rejected_batch_is_transport_error(self):
        self.session.post.return_value = fake_response(status=400, body={"success": False, "message": "payload inválido"})
        with self.assertRaisesRegex(TransportError, "payload inválido"):
            self.store.submit_batch([{"poNumber": "OC-1"}])

    def test_single_update(self):
        self.session.post.return_value = fake_response(body={"success": True, "data": {"id": 9, "isUpdate": True}})
        result = self.store.submit_one({"poNumber": "OC-1"})

        self.assertEqual(self.session.post.call_args[0][0], "http://api.local/api/ordenes-compra")
        self.assertTrue(result.success)
        self.assertFalse(result.created)
        self.assertEqual(result.entity_id, 9)

    def test_single_rejection_is_a_failed_result(self):
        self.session.post.return_value = fake_response(status=422, body={"success": False, "message": "proveedor requerido"})
        result = self.store.submit_one({"poNumber": "OC-1"})
        self.assertFalse(result.success)
        self.assertEqual(result.error_message, "proveedor requerido")

    def test_single_success_without_id_is_a_failed_result(self):
        self.session.post.return_value = fake_response(body={"success": True, "data": {}})
        result = self.store.submit_one({"poNumber": "OC-1"})
        self.assertFalse(result.success)
        self.assertEqual(result.error_message, NO_ID_MESSAGE)

    def test_fetch_reference_data(self):
        self.session.get.return_value = fake_response(
            body={
                "success": True,
                "data": {
                    "costCenters": [{"id": 3, "name": "Torre A", "code": "TA"}],
                    "accountCategories": [{"id": 8, "name": "Materiales", "code": "MAT", "group_name": "Insumos"}],
                },
            }
        )
        reference = self.store.fetch_reference_data()

        self.session.get.assert_called_once_with("http://api.local/api/ordenes-compra/items/reference-data", timeout=5)
        self.assertEqual(reference.cost_centers, [CostCenter(3, "Torre A", "TA")])
        self.assertEqual(reference.account_categories, [AccountCategory(8, "Materiales", "MAT", "Insumos")])

    def test_failed_reference_reply_is_transport_error(self):
        self.session.get.return_value = fake_response(status=401, body={"success": False, "message": "token inválido"})
        with self.assertRaisesRegex(TransportError, "token inválido"):
            self.store.fetch_reference_data()

    def test_submit_items_request_shape(self):
        self.session.post.return_value = fake_response(body={"success": True, "data": {"inserted": 2}})
        items = [{"total": 10.0}, {"total": 20.0}]
        inserted = self.store.submit_items(42, items)

        self.session.post.assert_called_once_with(
            "http://api.local/api/ordenes-compra/42/items/bulk",
            json={"items": items},
            timeout=5,
        )
        self.assertEqual(inserted, 2)

    def test_rejected_items_are_transport_error(self):
        self.session.post.return_value = fake_response(status=400, body={"success": False, "message": "cuenta inválida"})
        with self.assertRaisesRegex(TransportError, "cuenta inválida"):
            self.store.submit_items(42, [{"total": 10.0}])


class HttpFallbackTests(unittest.TestCase):
    """Batch replies the store cannot make sense of end in the one-by-one path."""

    def setUp(self):
        self.session = mock.Mock()
        self.session.headers = {}
        self.session.get.return_value = fake_response(body={"success": True, "data": {}})
        self.store = HttpOrderStore("http://api.local/api", session=self.session)
        self.next_id = iter(range(100, 200))

    def run_with_batch_reply(self, batch_body):
        def post(url, json=None, timeout=None):
            if url.endswith("/batch"):
                return fake_response(body=batch_body)
            if url.endswith("/items/bulk"):
                return fake_response(body={"success": True, "data": {"inserted": len(json["items"])}})
            return fake_response(body={"success": True, "data": {"id": next(self.next_id)}})

        self.session.post.side_effect = post
        with self.assertLogs("oc_consolidator.upsert", level="WARNING"):
            return UpsertOrchestrator(self.store).submit([make_record("OC-1"), make_record("OC-2")])

    def assert_sent_one_by_one(self, outcome):
        urls = [call.args[0] for call in self.session.post.call_args_list]
        self.assertEqual(urls.count("http://api.local/api/ordenes-compra"), 2)
        self.assertTrue(outcome.used_fallback)
        self.assertEqual([item.entity_id for item in outcome.outcomes], [100, 101])
        self.assertEqual(outcome.created, 2)
        self.assertEqual(outcome.items_created, 2)

    def test_reply_without_ids(self):
        self.assert_sent_one_by_one(self.run_with_batch_reply({"success": True, "data": {"ids": [], "created": 0}}))

    def test_data_is_a_list(self):
        self.assert_sent_one_by_one(self.run_with_batch_reply({"success": True, "data": [5, 6]}))

    def test_errors_are_plain_strings(self):
        self.assert_sent_one_by_one(self.run_with_batch_reply({"success": True, "data": {"errors": ["boom"]}}))


if __name__ == "__main__":
    unittest.main()
