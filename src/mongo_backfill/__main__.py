from mongo_backfill.cli import app

app(prog_name="mbackfill")
