# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "stackmux[server] @ file:///${PROJECT_ROOT}/../stackmux",
# ]
# ///
"""RSGI server demo.

Fully functional web server using Granian + stackmux Router.
"""

import asyncio
import json
import logging
import sqlite3
from json.decoder import JSONDecodeError

from granian.server.embed import Server

from stackmux import Application, Context, HTTPError, NotFound, Router, format_routes
from stackmux.compose import Middleware, Next

ADDRESS = "127.0.0.1"
PORT = 8000

logger = logging.getLogger(__name__)

_db = sqlite3.connect(":memory:")
_db.cursor().executescript("""
CREATE TABLE IF NOT EXISTS user (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS product (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);
""")


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    router = Router()
    router.get("/", home, name="home")
    router.redirect("/index", "home")
    router.use("/user", user_router(_db).routes())
    router.use("/product", product_router(_db).routes())
    logger.info("routes:\n%s", format_routes(router))

    app = Application(router.routes(), router.allowed_methods(throw=True))
    server = Server(app, address=ADDRESS, port=PORT, log_access=True)
    try:
        await server.serve()
    except asyncio.CancelledError:
        pass


async def home(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
    ctx.response.body = "Welcome home"


async def json_body(ctx: Context, next: Next) -> None:  # noqa: A002
    """Parse the request body into ``ctx.state["payload"]``."""
    try:
        payload = json.loads(ctx.request.body)
    except JSONDecodeError:
        raise HTTPError(422, "Invalid json") from None
    if "name" not in payload:
        raise HTTPError(422, "Missing name")
    ctx.state["payload"] = payload
    await next()


def load_row(db: sqlite3.Connection, table: str):
    """Param hook: resolve ``:id`` to a row or answer 404."""

    async def hook(value: str, ctx: Context, next: Next) -> None:  # noqa: A002
        try:
            row_id = int(value)
        except ValueError:
            raise NotFound from None
        cur = db.cursor()
        cur.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,))  # noqa: S608
        result = cur.fetchone()
        if result is None:
            raise NotFound
        ctx.state["row"] = {"id": result[0], "name": result[1]}
        await next()

    return hook


def user_router(db: sqlite3.Connection) -> Router:
    router = Router()
    router.param("id", load_row(db, "user"))
    router.get("/", list_rows(db, "user"))
    router.get("/:id", show_row)
    router.post("/", json_body, create_row(db, "user"))
    router.patch("/:id", json_body, update_user(db))
    return router


def product_router(db: sqlite3.Connection) -> Router:
    router = Router()
    router.param("id", load_row(db, "product"))
    router.get("/", list_rows(db, "product"))
    router.get("/:id", show_row)
    router.post("/", json_body, create_row(db, "product"))
    return router


async def show_row(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
    ctx.response.body = ctx.state["row"]


# closure over handler to inject dependencies
def list_rows(db: sqlite3.Connection, table: str) -> Middleware[Context]:
    async def handler(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        cur = db.cursor()
        cur.execute(f"SELECT * FROM {table}")  # noqa: S608
        ctx.response.body = [{"id": row[0], "name": row[1]} for row in cur.fetchall()]

    return handler


def create_row(db: sqlite3.Connection, table: str) -> Middleware[Context]:
    async def handler(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        cur = db.cursor()
        name = ctx.state["payload"]["name"]
        cur.execute(
            f"INSERT INTO {table} (name) VALUES (?) RETURNING *",  # noqa: S608
            (name,),
        )
        result = cur.fetchone()
        ctx.response.status = 201
        ctx.response.body = {"id": result[0], "name": result[1]}

    return handler


def update_user(db: sqlite3.Connection) -> Middleware[Context]:
    async def handler(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        cur = db.cursor()
        name = ctx.state["payload"]["name"]
        cur.execute(
            "UPDATE user SET name = ? WHERE id = ? RETURNING *",
            (name, ctx.state["row"]["id"]),
        )
        result = cur.fetchone()
        ctx.response.body = {"id": result[0], "name": result[1]}

    return handler


if __name__ == "__main__":
    asyncio.run(main())
