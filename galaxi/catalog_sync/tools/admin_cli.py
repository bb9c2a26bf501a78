"""
Administrative CLI for the catalog.

Migrations are explicit operations and are only run from here, never at
server startup:
- migrate-schema: Apply schema migrations to the authoritative store
- migrate-movies: Copy the authoritative store into the search index

Catalog operations, through the same services the server uses:
- list / get: Read from the authoritative store
- create / update / delete: Mutate through the command side
- search: Query the search index (cache-aside)
- check-availability: Ask the query side over the bus

Usage:
    galaxi-catalog-admin migrate-schema
    galaxi-catalog-admin migrate-movies [--direct]
    galaxi-catalog-admin create --title Dune --genre Sci-Fi
    galaxi-catalog-admin check-availability 9f0c2a6e-...

Configuration comes from the same environment variables as the server.

Invariants:
    - Failures exit with a non-zero code
    - Output is JSON on stdout, diagnostics on stderr
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..bus import BusError, EventBus, create_event_bus
from ..cache import CacheAside
from ..config import ServerConfig
from ..errors import CatalogError, NotFoundError
from ..main import create_cache, create_index, create_store, setup_logging
from ..models import Movie
from ..services import MovieCommandService, MovieQueryService
from ..sync import AvailabilityClient, MigrationCoordinator

logger = logging.getLogger(__name__)


class AdminCLI:
    """Runs administrative commands against configured backends.

    Example:
        >>> cli = AdminCLI(ServerConfig.from_env())
        >>> await cli.migrate_schema()
        2
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.store = create_store(config)
        self.index = create_index(config)
        self.cache = CacheAside(create_cache(config), ttl_seconds=config.sync.cache_ttl_seconds)
        self.bus = create_event_bus(config)

    async def close(self) -> None:
        await self.cache.drain(self.config.sync.drain_timeout_seconds)
        await self.cache.cache.close()
        await self.index.close()
        if self.bus.is_connected:
            await self.bus.close()

    async def _connected_bus(self) -> EventBus:
        if not self.bus.is_connected:
            await self.bus.connect()
        return self.bus

    def _coordinator(self) -> MigrationCoordinator:
        return MigrationCoordinator(
            self.store,
            bus=self.bus,
            index=self.index,
            cache=self.cache,
            topic=self.config.topics.migration,
        )

    async def _commands(self) -> MovieCommandService:
        return MovieCommandService(
            self.store,
            await self._connected_bus(),
            self.cache,
            topic=self.config.topics.mutations,
        )

    async def migrate_schema(self) -> int:
        return await self._coordinator().migrate_schema()

    async def migrate_movies(self, direct: bool = False) -> dict[str, Any]:
        if not direct:
            await self._connected_bus()
        report = await self._coordinator().migrate_movies(publish=not direct)
        output: dict[str, Any] = {"movies": report.movies}
        if report.position is not None:
            output["published"] = str(report.position)
        if report.result is not None:
            output["indexed"] = len(report.result.succeeded)
            output["failed"] = report.result.failed
        return output

    async def list_movies(self) -> list[dict[str, Any]]:
        commands = MovieCommandService(self.store, self.bus, self.cache)
        return [m.to_document() for m in await commands.get_all_movies()]

    async def get_movie(self, movie_id: str) -> dict[str, Any]:
        commands = MovieCommandService(self.store, self.bus, self.cache)
        return (await commands.get_movie_by_id(movie_id)).to_document()

    async def create_movie(self, fields: dict[str, Any]) -> dict[str, Any]:
        movie = await (await self._commands()).create_movie(Movie.from_document(fields))
        return movie.to_document()

    async def update_movie(self, movie_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        movie = await (await self._commands()).update_movie(movie_id, changes)
        return movie.to_document()

    async def delete_movie(self, movie_id: str) -> dict[str, Any]:
        await (await self._commands()).delete_movie(movie_id)
        return {"deleted": movie_id}

    async def search(self, term: str) -> list[dict[str, Any]]:
        queries = MovieQueryService(self.index, self.cache, page_size=self.config.sync.page_size)
        return [m.to_document() for m in await queries.search_movies(term)]

    async def check_availability(self, movie_id: str, timeout: float) -> dict[str, Any]:
        client = AvailabilityClient(
            await self._connected_bus(),
            request_topic=self.config.topics.availability,
            reply_topic=self.config.topics.availability_reply,
            timeout=timeout,
        )
        try:
            exist = await client.check(movie_id)
        finally:
            await client.close()
        return {"movieId": movie_id, "exist": exist}


def _movie_fields(args: argparse.Namespace) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name in ("title", "genre", "description"):
        value = getattr(args, name)
        if value is not None:
            fields[name] = value
    if args.attributes:
        attributes = json.loads(args.attributes)
        if not isinstance(attributes, dict):
            raise ValueError("--attributes must be a JSON object")
        fields.update(attributes)
    return fields


def _add_movie_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--title", help="Movie title")
    parser.add_argument("--genre", help="Genre label")
    parser.add_argument("--description", help="Synopsis")
    parser.add_argument("--attributes", help="Extra attributes as a JSON object")


async def _run(cli: AdminCLI, args: argparse.Namespace) -> Any:
    if args.command == "migrate-schema":
        return {"schema_version": await cli.migrate_schema()}
    elif args.command == "migrate-movies":
        return await cli.migrate_movies(direct=args.direct)
    elif args.command == "list":
        return await cli.list_movies()
    elif args.command == "get":
        return await cli.get_movie(args.movie_id)
    elif args.command == "create":
        return await cli.create_movie(_movie_fields(args))
    elif args.command == "update":
        return await cli.update_movie(args.movie_id, _movie_fields(args))
    elif args.command == "delete":
        return await cli.delete_movie(args.movie_id)
    elif args.command == "search":
        return await cli.search(args.term)
    elif args.command == "check-availability":
        return await cli.check_availability(args.movie_id, args.timeout)
    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Galaxi catalog administration tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate-schema", help="Apply schema migrations to the store")

    migrate_parser = subparsers.add_parser(
        "migrate-movies", help="Copy all movies from the store into the search index"
    )
    migrate_parser.add_argument(
        "--direct",
        action="store_true",
        help="Bulk-index directly instead of publishing a migration batch",
    )

    subparsers.add_parser("list", help="List all movies in the store")

    get_parser = subparsers.add_parser("get", help="Get a movie from the store")
    get_parser.add_argument("movie_id")

    create_parser = subparsers.add_parser("create", help="Create a movie")
    _add_movie_arguments(create_parser)

    update_parser = subparsers.add_parser("update", help="Update a movie")
    update_parser.add_argument("movie_id")
    _add_movie_arguments(update_parser)

    delete_parser = subparsers.add_parser("delete", help="Delete a movie")
    delete_parser.add_argument("movie_id")

    search_parser = subparsers.add_parser("search", help="Search the index")
    search_parser.add_argument("term")

    check_parser = subparsers.add_parser(
        "check-availability", help="Ask the query side whether a movie exists"
    )
    check_parser.add_argument("movie_id")
    check_parser.add_argument("--timeout", type=float, default=5.0, help="Reply timeout (s)")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the admin tool."""
    args = build_parser().parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config)
    cli = AdminCLI(config)

    async def run() -> Any:
        try:
            return await _run(cli, args)
        finally:
            await cli.close()

    try:
        output = asyncio.run(run())
    except NotFoundError as e:
        print(f"Not found: {e}", file=sys.stderr)
        sys.exit(1)
    except (CatalogError, BusError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(output, indent=2, default=str))
    sys.exit(0)


if __name__ == "__main__":
    main()
