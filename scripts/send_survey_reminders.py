#!/usr/bin/env python3
"""
Run one automatic survey-reminder pass outside the HTTP cron endpoint.

Same logic as GET /api/cron/survey-reminders; handy for a platform scheduler
that can run a command but cannot send an authenticated request.

Usage:
    python scripts/send_survey_reminders.py
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.eqpqiq import create_app  # noqa: E402
from app.eqpqiq.db import session_scope  # noqa: E402
from app.eqpqiq.modules.surveys.service import run_auto_reminders  # noqa: E402


def main() -> int:
    app = create_app()
    with app.app_context():
        with session_scope(app) as s:
            result = run_auto_reminders(s, config=app.config)
    print(json.dumps(result), flush=True)
    return 1 if result["reminders_failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
