"""
Top-level package for the obstruction bingo reporting backend.

`report_outbox` holds the durable report queue and its delivery worker;
`tile_machine` holds the per-tile interaction machine that feeds it.
"""

__all__: list[str] = ["report_outbox", "tile_machine"]
