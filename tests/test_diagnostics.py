from __future__ import annotations

import mihomo_helper.core.diagnostics as diag
import mihomo_helper.core.executor as ex
from mihomo_helper.core.config import HelperConfig


def test_collect_diagnostics_lists_services(short_tmp, monkeypatch, fake_executor) -> None:
    monkeypatch.setattr(diag, "get_logs_dir", lambda: short_tmp)
    sock_path = short_tmp / "helper.sock"
    sock_path.write_text("", encoding="utf-8")

    report = diag.collect_diagnostics(
        HelperConfig(socket_path=str(sock_path)), fake_executor(("Wi-Fi", "Ethernet"))
    )
    assert f"- Socket: present ({sock_path})" in report
    assert f"- Logs: {short_tmp}" in report
    assert "- (1) Wi-Fi" in report
    assert "- (2) Ethernet" in report


def test_collect_diagnostics_reports_enumeration_errors(short_tmp, monkeypatch, fake_executor) -> None:
    monkeypatch.setattr(diag, "get_logs_dir", lambda: short_tmp)

    report = diag.collect_diagnostics(
        HelperConfig(socket_path=str(short_tmp / "none.sock")), fake_executor(listing="")
    )
    assert "- Socket: absent" in report
    assert "- Error listing services: no network services found" in report


def test_collect_diagnostics_reports_missing_networksetup(short_tmp, monkeypatch) -> None:
    monkeypatch.setattr(diag, "get_logs_dir", lambda: short_tmp)
    monkeypatch.setattr(ex.shutil, "which", lambda _name: None)

    def missing(cmd, **_kw):  # noqa: ANN001
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(ex.subprocess, "run", missing)

    report = diag.collect_diagnostics(HelperConfig(networksetup_path="networksetup"))
    assert "- networksetup: no" in report
    assert "- Error listing services: [Errno 2] No such file or directory" in report
