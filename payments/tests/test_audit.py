import json
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from payments import audit
from payments.audit import FIXTURES, Observation, Scenario, run_audit
from payments.models import AuditLog, IdempotencyRecord, Transaction

pytestmark = pytest.mark.django_db


def test_every_scenario_passes():
    report = run_audit()
    assert [f.scenario for f in report.findings] == list(Scenario)
    assert report.passed, [f.as_dict() for f in report.failures]


def test_audit_leaves_no_rows_behind():
    run_audit()
    assert Transaction.objects.count() == 0
    assert IdempotencyRecord.objects.count() == 0
    assert AuditLog.objects.count() == 0


def test_subset_of_scenarios():
    report = run_audit([Scenario.TAMPERED_SIGNATURE, Scenario.ZERO_AMOUNT])
    assert [f.scenario for f in report.findings] == [Scenario.TAMPERED_SIGNATURE, Scenario.ZERO_AMOUNT]
    assert report.passed


def test_broken_expectation_is_reported_with_remediation(monkeypatch):
    fixture = FIXTURES[Scenario.WELL_FORMED_SUCCESS]
    wrong = type(fixture)(
        description=fixture.description,
        expected=Observation(state="failure"),
        remediation=fixture.remediation,
    )
    monkeypatch.setitem(audit.FIXTURES, Scenario.WELL_FORMED_SUCCESS, wrong)

    report = run_audit([Scenario.WELL_FORMED_SUCCESS])
    assert not report.passed
    finding = report.as_dict()["findings"][0]
    assert finding["remediation"] == fixture.remediation
    assert finding["observed"]["state"] == "success"


def test_crash_is_a_finding(monkeypatch):
    def explode(fixture, config):
        raise RuntimeError("boom")

    monkeypatch.setattr(audit, "_drive_delivery", explode)
    report = run_audit([Scenario.AMOUNT_MISMATCH])
    assert report.failures[0].error == "RuntimeError: boom"


def test_command_json_output():
    out = StringIO()
    call_command("audit_payments", "--json", stdout=out)
    data = json.loads(out.getvalue())
    assert data["passed"] is True
    assert data["total"] == len(Scenario)


def test_command_fails_on_defect(monkeypatch):
    monkeypatch.setattr(audit, "_drive_build", lambda fixture, config: Observation())
    with pytest.raises(CommandError):
        call_command("audit_payments", "--scenario", "zero_amount", stdout=StringIO())
