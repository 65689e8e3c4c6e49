"""Tests for the decision audit report CLI."""

from __future__ import annotations

import pytest
from rich.console import Console

from fleetgate.ledger import audit
from fleetgate.ledger.service import AuditLedgerService
from fleetgate.verification.chain import VerificationChain
from fleetgate.verification.snapshots import SnapshotLoader

from conftest import NOW, add_vehicle


class TestAuditReport:
    def test_report_lists_decisions(self, store, tmp_path, capsys, monkeypatch):
        monkeypatch.setattr(audit, "console", Console(width=200))
        add_vehicle(store)
        chain = VerificationChain(loader=SnapshotLoader(store), auditor=AuditLedgerService(store))
        chain.authorize_dispatch("AB12CDE", now=NOW)
        chain.authorize_dispatch("MISSING", now=NOW)

        assert audit.run_report(f"sqlite:///{tmp_path}/fleetgate.db", limit=10) is True
        out = capsys.readouterr().out
        assert "DISPATCH_DENIED" in out
        assert "Report Complete" in out

    def test_main_exit_code(self, store, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            audit.main(["--database-url", f"sqlite:///{tmp_path}/fleetgate.db", "--action", "DISPATCH_DENIED"])
        assert excinfo.value.code == 0

    def test_unreadable_database(self, tmp_path):
        assert audit.run_report(f"sqlite:///{tmp_path}/nowhere/x.db") is False
