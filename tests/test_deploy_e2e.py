"""End-to-end check against a real deploy CLI.

Skipped unless ``TUIPROBE_DEPLOY_BIN`` points at an executable. The bundle
reference defaults to a small public test bundle and can be overridden with
``TUIPROBE_DEPLOY_SOURCE``.
"""
import os
import shutil

import pytest

from tuiprobe.services.harness import Terminal, TerminalConfig, run_terminal_test

DEPLOY_BIN = os.environ.get("TUIPROBE_DEPLOY_BIN", "")
DEPLOY_SOURCE = os.environ.get("TUIPROBE_DEPLOY_SOURCE", "ghcr.io/unclegedd/ghcr-test:0.0.1")

pytestmark = pytest.mark.skipif(
    not DEPLOY_BIN or not os.access(DEPLOY_BIN, os.X_OK) or shutil.which("bash") is None,
    reason="TUIPROBE_DEPLOY_BIN is not set to an executable",
)


def test_deploy_progress_is_rendered() -> None:
    def body(terminal: Terminal) -> None:
        terminal.submit(f"{DEPLOY_BIN} deploy {DEPLOY_SOURCE} --confirm")
        terminal.wait_for_text("Validating bundle", timeout=60)
        terminal.wait_for_text("UDS Bundle: ghcr-test", timeout=120)
        print(terminal.serialize())

    run_terminal_test(body, TerminalConfig(rows=150, columns=150, timeout=300, wait_timeout=60))
