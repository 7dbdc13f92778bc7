"""
aggregation — Periodic density aggregation.

    orchestrator  — one cycle: samples → zones → readings → alerts → cleanup
    scheduler     — asyncio job loops driving the cycle and the expiry sweep
"""
