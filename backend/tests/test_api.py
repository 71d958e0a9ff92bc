from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from invoicing_scheduler import api as api_module

from invoicing_scheduler.main import create_app
from invoicing_scheduler.mailer import StubMailer

PREFIX = "/api/v1/invoicing"
START = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _client(clock: _Clock | None = None) -> TestClient:
    api_module.reset_runtime_state_for_tests(
        mailer_override=StubMailer(enabled=True),
        clock=clock or _Clock(START),
    )
    return TestClient(create_app())


def _ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _schedule_payload(**overrides) -> dict:
    payload = {
        "name": "Daily T1",
        "tenant_id": "T1",
        "cadence": "daily",
        "hour_of_day": 6,
        "recipients": "ops@example.com;billing@example.com",
        "active": True,
        "description": "daily billing",
    }
    payload.update(overrides)
    return payload


def _seed_billing_data(client: TestClient) -> None:
    tenants = client.post(f"{PREFIX}/tenants/upsert", json={"tenants": [{"tenant_id": "T1", "name": "Tenant One"}]})
    assert tenants.status_code == 200
    assert tenants.json()["processed_count"] == 1
    client.post(
        f"{PREFIX}/grades/upsert",
        json={"grades": [{"grade_id": "senior", "name": "Senior", "hourly_rate": 50.0}]},
    )
    client.post(
        f"{PREFIX}/performers/upsert",
        json={"performers": [{"performer_id": "p1", "name": "Dana", "grade_id": "senior"}]},
    )
    work = client.post(
        f"{PREFIX}/work-records/upsert",
        json={
            "work_records": [
                {
                    "work_record_id": "w1",
                    "tenant_id": "T1",
                    "performer_id": "p1",
                    "title": "Design",
                    "hours": 2,
                    "status": "completed",
                },
                {
                    "work_record_id": "w2",
                    "tenant_id": "T1",
                    "performer_id": "p1",
                    "title": "Build",
                    "hours": 3,
                    "status": "completed",
                },
            ]
        },
    )
    assert work.json()["processed_count"] == 2


def test_schedule_lifecycle_generates_and_delivers_invoice() -> None:
    client = _client()
    _seed_billing_data(client)

    created = client.post(f"{PREFIX}/schedules", json=_schedule_payload())
    assert created.status_code == 201
    schedule = created.json()
    schedule_id = schedule["schedule_id"]
    assert schedule["active"] is True
    assert schedule["last_run_at"] is None
    assert _ts(schedule["next_run_at"]) == datetime(2026, 3, 11, 6, tzinfo=timezone.utc)

    forced = client.post(f"{PREFIX}/schedules/{schedule_id}/run")
    assert forced.status_code == 200
    summary = forced.json()
    assert summary["status"] == "completed"
    assert summary["executed"] is True
    assert summary["invoice_number"] == "T1-00001"
    assert summary["message"] == "Invoice T1-00001 generated with 2 lines."
    assert summary["run"]["tasks_count"] == 2

    detail = client.get(f"{PREFIX}/schedules/{schedule_id}")
    assert detail.status_code == 200
    detail_data = detail.json()
    assert detail_data["latest_run"]["is_success"] is True
    assert _ts(detail_data["schedule"]["last_run_at"]) == START
    assert _ts(detail_data["schedule"]["next_run_at"]) == datetime(2026, 3, 11, 6, tzinfo=timezone.utc)

    invoices = client.get(f"{PREFIX}/tenants/T1/invoices")
    assert invoices.status_code == 200
    assert [invoice["number"] for invoice in invoices.json()] == ["T1-00001"]
    invoice = invoices.json()[0]
    assert invoice["total"] == 250.0
    assert invoice["status"] == "sent"

    invoice_detail = client.get(f"{PREFIX}/invoices/{invoice['invoice_id']}")
    assert invoice_detail.status_code == 200
    deliveries = invoice_detail.json()["deliveries"]
    assert [delivery["recipient"] for delivery in deliveries] == ["ops@example.com", "billing@example.com"]
    assert all(delivery["is_success"] for delivery in deliveries)
    assert {delivery["subject"] for delivery in deliveries} == {"Invoice T1-00001"}

    pdf = client.get(f"{PREFIX}/invoices/{invoice['invoice_id']}/pdf")
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")

    history = client.get(f"{PREFIX}/schedules/{schedule_id}/runs")
    assert history.status_code == 200
    assert history.json()["schedule_id"] == schedule_id
    assert len(history.json()["runs"]) == 1

    second = client.post(f"{PREFIX}/schedules/{schedule_id}/run")
    assert second.json()["status"] == "completed"
    assert second.json()["invoice_number"] is None
    assert second.json()["message"] == "No completed work to invoice."


def test_force_run_of_tenantless_schedule_reports_failure() -> None:
    client = _client()
    schedule_id = client.post(f"{PREFIX}/schedules", json=_schedule_payload(tenant_id=None)).json()["schedule_id"]

    forced = client.post(f"{PREFIX}/schedules/{schedule_id}/run")

    assert forced.status_code == 200
    assert forced.json()["status"] == "failed"
    assert forced.json()["message"] == "Run failed: schedule has no tenant"
    detail = client.get(f"{PREFIX}/schedules/{schedule_id}").json()
    assert _ts(detail["schedule"]["next_run_at"]) == datetime(2026, 3, 11, 6, tzinfo=timezone.utc)


def test_unknown_schedule_returns_404() -> None:
    client = _client()

    assert client.get(f"{PREFIX}/schedules/999").status_code == 404
    assert client.put(f"{PREFIX}/schedules/999", json=_schedule_payload()).status_code == 404
    assert client.delete(f"{PREFIX}/schedules/999").status_code == 404
    assert client.post(f"{PREFIX}/schedules/999/toggle").status_code == 404
    assert client.post(f"{PREFIX}/schedules/999/run").status_code == 404
    assert client.get(f"{PREFIX}/schedules/999/runs").status_code == 404
    assert client.get(f"{PREFIX}/schedules/999").json()["detail"] == "schedule not found: 999"
    assert client.get(f"{PREFIX}/invoices/999").status_code == 404
    assert client.get(f"{PREFIX}/invoices/999/pdf").status_code == 404


def test_toggle_pauses_without_losing_next_run() -> None:
    client = _client()
    schedule = client.post(f"{PREFIX}/schedules", json=_schedule_payload()).json()
    schedule_id = schedule["schedule_id"]

    paused = client.post(f"{PREFIX}/schedules/{schedule_id}/toggle")
    assert paused.status_code == 200
    assert paused.json()["active"] is False
    assert paused.json()["next_run_at"] == schedule["next_run_at"]

    blocked = client.post(f"{PREFIX}/schedules/{schedule_id}/run")
    assert blocked.status_code == 409
    assert client.get(f"{PREFIX}/schedules/{schedule_id}/runs").json()["runs"] == []

    resumed = client.post(f"{PREFIX}/schedules/{schedule_id}/toggle")
    assert resumed.json()["active"] is True
    assert resumed.json()["next_run_at"] == schedule["next_run_at"]


def test_inactive_schedule_gets_next_run_on_first_activation() -> None:
    client = _client()
    created = client.post(f"{PREFIX}/schedules", json=_schedule_payload(active=False))
    assert created.status_code == 201
    assert created.json()["next_run_at"] is None

    resumed = client.post(f"{PREFIX}/schedules/{created.json()['schedule_id']}/toggle")

    assert _ts(resumed.json()["next_run_at"]) == datetime(2026, 3, 11, 6, tzinfo=timezone.utc)


def test_update_recomputes_next_run_only_when_needed() -> None:
    clock = _Clock(START)
    client = _client(clock)
    schedule_id = client.post(f"{PREFIX}/schedules", json=_schedule_payload()).json()["schedule_id"]

    clock.now = START + timedelta(hours=1)
    renamed = client.put(f"{PREFIX}/schedules/{schedule_id}", json=_schedule_payload(name="Renamed"))
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Renamed"
    assert _ts(renamed.json()["next_run_at"]) == datetime(2026, 3, 11, 6, tzinfo=timezone.utc)

    # 2026-03-13 is a Friday
    weekly = client.put(
        f"{PREFIX}/schedules/{schedule_id}",
        json=_schedule_payload(cadence="weekly", weekday=4, hour_of_day=9),
    )
    assert weekly.json()["cadence"] == "weekly"
    assert weekly.json()["weekday"] == 4
    assert _ts(weekly.json()["next_run_at"]) == datetime(2026, 3, 13, 9, tzinfo=timezone.utc)

    monthly = client.put(
        f"{PREFIX}/schedules/{schedule_id}",
        json=_schedule_payload(cadence="monthly", day_of_month=31, weekday=4, active=False),
    )
    assert monthly.json()["weekday"] is None
    assert monthly.json()["day_of_month"] == 31
    assert monthly.json()["next_run_at"] is None


def test_schedule_validation_errors_return_422() -> None:
    client = _client()

    assert client.post(f"{PREFIX}/schedules", json=_schedule_payload(cadence="weekly")).status_code == 422
    assert client.post(f"{PREFIX}/schedules", json=_schedule_payload(cadence="monthly")).status_code == 422
    assert client.post(f"{PREFIX}/schedules", json=_schedule_payload(cadence="hourly")).status_code == 422
    assert client.post(f"{PREFIX}/schedules", json=_schedule_payload(hour_of_day=24)).status_code == 422
    assert (
        client.post(f"{PREFIX}/schedules", json=_schedule_payload(cadence="monthly", day_of_month=32)).status_code
        == 422
    )
    assert client.post(f"{PREFIX}/schedules", json=_schedule_payload(name="   ")).status_code == 422
    assert client.post(f"{PREFIX}/schedules", json=_schedule_payload(recipients="ops@;x")).status_code == 422
    assert (
        client.post(
            f"{PREFIX}/tenants/upsert",
            json={"tenants": [{"tenant_id": "ACME-EU", "name": "Acme"}]},
        ).status_code
        == 422
    )
    assert client.get(f"{PREFIX}/schedules").json() == []


def test_hyphenated_tenant_id_is_rejected_everywhere() -> None:
    client = _client()

    schedule = client.post(f"{PREFIX}/schedules", json=_schedule_payload(tenant_id="ACME-EU"))
    assert schedule.status_code == 422
    assert "prefixes invoice numbers" in schedule.text

    work = client.post(
        f"{PREFIX}/work-records/upsert",
        json={
            "work_records": [
                {"work_record_id": "w9", "tenant_id": "ACME-EU", "title": "Audit", "hours": 1, "status": "completed"}
            ]
        },
    )
    assert work.status_code == 422
    assert "prefixes invoice numbers" in work.text

    assert client.post(f"{PREFIX}/schedules", json=_schedule_payload(tenant_id="  ")).status_code == 201
    assert client.get(f"{PREFIX}/schedules").json()[0]["tenant_id"] is None


def test_default_hour_applies_when_omitted() -> None:
    client = _client()
    payload = _schedule_payload()
    payload.pop("hour_of_day")

    created = client.post(f"{PREFIX}/schedules", json=payload)

    assert created.json()["hour_of_day"] == 6


def test_list_orders_by_tenant_then_name_and_delete_removes() -> None:
    client = _client()
    ids = {}
    for name, tenant_id in (("Zeta", "T2"), ("Beta", "T1"), ("Global", None), ("Alpha", "T2"), ("Alpha", "T1")):
        created = client.post(f"{PREFIX}/schedules", json=_schedule_payload(name=name, tenant_id=tenant_id))
        ids[(tenant_id, name)] = created.json()["schedule_id"]

    listed = client.get(f"{PREFIX}/schedules").json()
    assert [(item["tenant_id"], item["name"]) for item in listed] == [
        (None, "Global"),
        ("T1", "Alpha"),
        ("T1", "Beta"),
        ("T2", "Alpha"),
        ("T2", "Zeta"),
    ]

    deleted = client.delete(f"{PREFIX}/schedules/{ids[('T2', 'Zeta')]}")
    assert deleted.status_code == 204
    assert len(client.get(f"{PREFIX}/schedules").json()) == 4


def test_recent_runs_span_all_schedules_newest_first() -> None:
    clock = _Clock(START)
    client = _client(clock)
    first = client.post(f"{PREFIX}/schedules", json=_schedule_payload(name="first")).json()["schedule_id"]
    second = client.post(f"{PREFIX}/schedules", json=_schedule_payload(name="second")).json()["schedule_id"]

    client.post(f"{PREFIX}/schedules/{first}/run")
    clock.now = START + timedelta(minutes=1)
    client.post(f"{PREFIX}/schedules/{second}/run")

    recent = client.get(f"{PREFIX}/schedules/runs/recent")
    assert recent.status_code == 200
    assert [run["schedule_id"] for run in recent.json()["runs"]] == [second, first]
    limited = client.get(f"{PREFIX}/schedules/runs/recent", params={"limit": 1})
    assert [run["schedule_id"] for run in limited.json()["runs"]] == [second]
    assert client.get(f"{PREFIX}/schedules/runs/recent", params={"limit": 0}).status_code == 422


def test_sweep_endpoint_runs_due_schedules() -> None:
    clock = _Clock(START)
    client = _client(clock)
    _seed_billing_data(client)
    schedule_id = client.post(f"{PREFIX}/schedules", json=_schedule_payload()).json()["schedule_id"]

    early = client.post(f"{PREFIX}/scheduler/sweep").json()
    assert early["due_count"] == 0

    clock.now = datetime(2026, 3, 11, 6, 0, 30, tzinfo=timezone.utc)
    swept = client.post(f"{PREFIX}/scheduler/sweep")
    assert swept.status_code == 200
    assert swept.json()["skipped"] is False
    assert swept.json()["due_count"] == 1
    assert swept.json()["processed_count"] == 1

    schedule = client.get(f"{PREFIX}/schedules/{schedule_id}").json()["schedule"]
    assert _ts(schedule["next_run_at"]) == datetime(2026, 3, 12, 6, tzinfo=timezone.utc)
    assert [invoice["number"] for invoice in client.get(f"{PREFIX}/tenants/T1/invoices").json()] == ["T1-00001"]

    status_response = client.get(f"{PREFIX}/scheduler/status")
    assert status_response.status_code == 200
    status_data = status_response.json()
    assert status_data["started"] is False
    assert status_data["sweep_active"] is False
    assert status_data["timezone"] == "UTC"
    assert status_data["last_sweep"]["processed_count"] == 1


def test_generate_endpoint_builds_invoice_on_demand() -> None:
    client = _client()

    empty = client.post(f"{PREFIX}/tenants/T1/invoices/generate")
    assert empty.status_code == 200
    assert empty.json() == {"generated": False, "invoice": None, "deliveries": []}

    _seed_billing_data(client)
    generated = client.post(
        f"{PREFIX}/tenants/T1/invoices/generate",
        json={"recipients": "ops@example.com, fail@example.com"},
    )
    assert generated.status_code == 200
    data = generated.json()
    assert data["generated"] is True
    assert data["invoice"]["number"] == "T1-00001"
    assert data["invoice"]["status"] == "sent"
    assert [delivery["is_success"] for delivery in data["deliveries"]] == [True, False]

    rejected = client.post(f"{PREFIX}/tenants/T1/invoices/generate", json={"recipients": "nope"})
    assert rejected.status_code == 422
