"""Relational schema bootstrap."""

from importlib.resources import files

from automara_core.protocols.database import Database


def load_schema() -> list[str]:
    """Return the bundled schema as individual statements."""
    script = files("automara_core").joinpath("schema.sql").read_text()
    lines = [line for line in script.splitlines() if not line.lstrip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


async def initialize_schema(db: Database) -> None:
    """Create tables and indexes if they do not exist yet."""
    for statement in load_schema():
        await db.execute(statement)
