#!/usr/bin/env python3
"""hwchain end-to-end demo.

Usage:
    python -m hwchain.demo.run_demo

The script:
1. Starts a submission chain for one student and assignment.
2. Records an answer edit, a hint request, a retry and a second edit.
3. Finalizes the chain and saves it under HWCHAIN_BASE_DIR (or a temp dir).
4. Reloads and verifies the saved file.
5. Rewrites one recorded answer without touching any hash and verifies
   again to show where the tampering is reported.
6. Lists the submissions found on disk.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from typing import Optional

from hwchain import session
from hwchain.store import submission_store

IDENTITY = {"assignment_id": "hw-sample-001", "student_id": "s-1042"}

# Fixed timestamps keep the printed hashes identical between runs.
T0 = 1_700_000_000_000


def banner(msg: str) -> None:
    print(f"\n{'='*60}")
    print(f"  {msg}")
    print(f"{'='*60}")


def run(base_dir: str) -> int:
    """Run the demo against *base_dir*.  Returns 0 if tampering was caught."""
    # ---- 1. Start ----
    banner("1) Start submission chain")
    handle = session.start(IDENTITY, timestamp=T0)
    print(f"   assignment={IDENTITY['assignment_id']} student={IDENTITY['student_id']}")

    # ---- 2. Record actions ----
    banner("2) Record lifecycle events")
    session.record(handle, "answer_edit", {"question_id": "q1", "answer": "x=1"}, T0 + 1_000)
    session.record(handle, "hint_request", {"question_id": "q2", "topic": "algebra"}, T0 + 2_000)
    session.record(handle, "retry", {"question_id": "q2", "attempt": 2}, T0 + 2_000)
    session.record(handle, "answer_edit", {"question_id": "q2", "answer": "y=4"}, T0 + 3_500)
    for e in handle.chain.events():
        print(f"   #{e.sequence} [{e.kind.value}] {e.event_hash[:12]}… ← {e.prev_hash[:12]}…")

    # ---- 3. Finalize + save ----
    banner("3) Finalize and save")
    final_hash = session.finalize(handle, timestamp=T0 + 4_000)
    path = session.save(handle, base_dir)
    print(f"   final_hash = {final_hash}")
    print(f"   saved to {path}")

    # ---- 4. Verify ----
    banner("4) Verify saved submission")
    report = session.verify(path, require_finalized=True)
    print(f"   {report.summary()}")
    print(f"   final hash matches: {report.final_hash == final_hash}")

    # ---- 5. Tamper ----
    banner("5) Rewrite answer q1 to 'x=2' and verify again")
    data = json.loads(path.read_bytes())
    data["events"][1]["payload"]["answer"] = "x=2"
    tampered = json.dumps(data, indent=2).encode("utf-8")
    tampered_report = session.verify(tampered)
    print(f"   {tampered_report.summary()}")
    for f in tampered_report.findings:
        print(f"     event {f.index}: {f.reason.value} – {f.message}")

    # ---- 6. List ----
    banner("6) Submissions on disk")
    for s in submission_store.list_submissions(base_dir):
        state = "finalized" if s.finalized else "in progress"
        print(f"   {s.assignment_id:<14} {s.student_id:<8} {s.event_count} events, {state}")

    banner("DEMO COMPLETE")
    caught = report.ok and not tampered_report.ok and tampered_report.first_divergence.index == 2
    return 0 if caught else 1


def main(base_dir: Optional[str] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    base_dir = base_dir or os.environ.get("HWCHAIN_BASE_DIR")
    if base_dir:
        return run(base_dir)
    with tempfile.TemporaryDirectory(prefix="hwchain-demo-") as tmp:
        return run(tmp)


if __name__ == "__main__":
    sys.exit(main())
