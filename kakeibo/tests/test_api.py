import os
import tempfile
import unittest

_DB_DIR = tempfile.mkdtemp(prefix="kakeibo-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'kakeibo.db')}"
os.environ.pop("ALPHA_VANTAGE_API_KEY", None)

from fastapi.testclient import TestClient  # noqa: E402

from kakeibo.main import app  # noqa: E402

USER = {"x-user-id": "1"}
OTHER_USER = {"x-user-id": "2"}


class KakeiboApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.client_context = TestClient(app)
        cls.client = cls.client_context.__enter__()

    @classmethod
    def tearDownClass(cls) -> None:
        cls.client_context.__exit__(None, None, None)

    def create_record(self, headers=USER, **overrides) -> dict:
        payload = {
            "title": "Index fund",
            "category": "investment",
            "amount": 30000,
            "date": "2024-01-10",
        }
        payload.update(overrides)
        response = self.client.post("/api/kakeibo", json=payload, headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.json(), {"status": "ok"})

    def test_missing_identity_is_rejected(self) -> None:
        response = self.client.get("/api/kakeibo")

        self.assertEqual(response.status_code, 401)

    def test_record_validation(self) -> None:
        response = self.client.post(
            "/api/kakeibo",
            json={"title": " ", "category": "food", "amount": 100, "date": "2024-01-01"},
            headers=USER,
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/kakeibo",
            json={"title": "Lunch", "category": "food", "amount": 0, "date": "2024-01-01"},
            headers=USER,
        )
        self.assertEqual(response.status_code, 400)

    def test_records_are_scoped_to_owner_and_deletable(self) -> None:
        created = self.create_record(headers=OTHER_USER, title="Groceries", category="food")

        other_records = self.client.get("/api/kakeibo", headers=OTHER_USER).json()
        self.assertIn(created["id"], [record["id"] for record in other_records])

        forbidden = self.client.delete(f"/api/kakeibo/{created['id']}", headers=USER)
        self.assertEqual(forbidden.status_code, 404)

        deleted = self.client.delete(f"/api/kakeibo/{created['id']}", headers=OTHER_USER)
        self.assertEqual(deleted.json(), {"status": "deleted"})

    def test_monthly_investment_groups(self) -> None:
        headers = {"x-user-id": "3"}
        self.create_record(headers=headers, amount=10000, date="2024-01-03")
        self.create_record(headers=headers, amount=5000, date="2024-01-20", category="Investment")
        self.create_record(headers=headers, amount=7000, date="2024-02-05")
        self.create_record(headers=headers, title="Rent", category="housing", amount=80000)

        investments = self.client.get("/expenses/investment", headers=headers).json()
        summary = self.client.get("/expenses/investment/monthly", headers=headers).json()

        self.assertEqual(len(investments), 3)
        self.assertEqual(summary["total_investments"], 3)
        self.assertEqual(summary["total_amount"], 22000)
        self.assertEqual(
            [(group["month"], group["total_amount"]) for group in summary["monthly_data"]],
            [("2024-01", 15000), ("2024-02", 7000)],
        )

    def test_expense_summary_by_category(self) -> None:
        headers = {"x-user-id": "5"}
        self.create_record(headers=headers, title="Lunch", category="food", amount=3000)
        self.create_record(headers=headers, title="Train", category="transport", amount=1000)
        self.create_record(headers=headers, amount=6000)

        response = self.client.get("/expenses/summary", headers=headers)

        body = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(body["total_amount"], 10000)
        self.assertEqual(body["total_records"], 3)
        by_category = {item["category"]: item for item in body["categories"]}
        self.assertEqual(by_category["food"]["total_amount"], 3000)
        self.assertAlmostEqual(by_category["investment"]["share_percent"], 60.0)
        self.assertEqual(by_category["clothing"]["count"], 0)

    def test_stock_lookup_without_api_key_is_synthetic_then_cached(self) -> None:
        first = self.client.get("/api/stock-cached/qqq").json()
        second = self.client.get("/api/stock-cached/QQQ").json()

        self.assertEqual(first["symbol"], "QQQ")
        self.assertEqual(first["status"], "synthetic")
        self.assertFalse(first["cached"])
        self.assertEqual(first["data"]["source"], "synthetic")
        self.assertEqual(len(first["data"]["monthly"]), 60)
        self.assertEqual(second["status"], "synthetic")
        self.assertTrue(second["cached"])
        self.assertEqual(second["data"], first["data"])

    def test_invalid_symbol_is_bad_request(self) -> None:
        response = self.client.get("/api/stock-cached/BAD;SYMBOL")

        self.assertEqual(response.status_code, 400)

    def test_stock_summary(self) -> None:
        response = self.client.get("/api/stock/SPY/summary")

        body = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(body["symbol"], "SPY")
        self.assertIsNotNone(body["previous_close"])

    def test_lump_sum_and_periodic_simulations(self) -> None:
        lump = self.client.get(
            "/simulations/lump-sum", params={"symbol": "SPY", "amount": 1000000, "years": 3}
        ).json()
        periodic = self.client.get(
            "/simulations/periodic", params={"symbol": "SPY", "amount": 1200000, "years": 2}
        ).json()

        self.assertEqual(lump["strategy"], "lump")
        self.assertEqual(lump["data_status"], "synthetic")
        self.assertEqual(lump["amount_invested"], 1000000)
        self.assertGreater(lump["current_value"], 0)
        self.assertEqual(periodic["strategy"], "periodic")
        self.assertEqual(periodic["periods"], 24)
        self.assertAlmostEqual(periodic["monthly_amount"], 50000)
        self.assertEqual(len(periodic["chart"]["labels"]), len(periodic["chart"]["valuation"]))

    def test_zero_amount_simulation_is_zeroed_not_an_error(self) -> None:
        response = self.client.get("/simulations/lump-sum", params={"amount": 0})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["current_value"], 0)

    def test_non_finite_amount_simulation_is_zeroed(self) -> None:
        for path in ("/simulations/lump-sum", "/simulations/periodic"):
            for amount in ("nan", "inf"):
                with self.subTest(path=path, amount=amount):
                    response = self.client.get(path, params={"amount": amount, "years": 2})

                    body = response.json()
                    self.assertEqual(response.status_code, 200)
                    self.assertEqual(body["amount_invested"], 0)
                    self.assertEqual(body["current_value"], 0)
                    self.assertEqual(body["profit"], 0)
                    self.assertEqual(body["profit_percent"], 0)

    def test_ledger_simulation_uses_owner_investments(self) -> None:
        headers = {"x-user-id": "4"}
        month = self.client.get("/api/stock-cached/SPY").json()["data"]["monthly"]
        first_day = sorted(month)[-3]
        self.create_record(headers=headers, amount=20000, date=first_day)

        result = self.client.get("/simulations/ledger", params={"symbol": "SPY"}, headers=headers).json()

        self.assertEqual(result["strategy"], "ledger")
        self.assertEqual(result["amount_invested"], 20000)
        self.assertEqual(result["periods"], 1)
        self.assertEqual(result["unmatched_months"], [])


if __name__ == "__main__":
    unittest.main()
