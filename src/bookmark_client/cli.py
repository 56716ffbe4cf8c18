"""
Command-line interface for the bookmark manager.

Usage:
    bookmarks login                      # print the "continue with provider" URL
    bookmarks login --callback URL       # finish signing in with the redirect URL
    bookmarks whoami
    bookmarks list
    bookmarks add "Python docs" https://docs.python.org/3/
    bookmarks delete BOOKMARK_ID
    bookmarks watch                      # live view, updates as bookmarks change
    bookmarks logout
"""
import argparse
import asyncio
import contextlib
import logging
import sys

from bookmark_client.app import BookmarkApp, View
from bookmark_client.config import get_client_settings
from bookmark_client.exceptions import SessionError
from bookmark_client.store import BookmarkListStore


def render(store: BookmarkListStore) -> str:
    """Render the bookmark list as plain text, newest first."""
    if not len(store):
        return "No bookmarks yet."
    lines = []
    for bookmark in store:
        created = bookmark.created_at.strftime("%Y-%m-%d %H:%M")
        lines.append(f"{bookmark.id}  {created}  {bookmark.title}\n    {bookmark.url}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(prog="bookmarks", description="Personal bookmark manager")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Sign in with the identity provider")
    login.add_argument(
        "--callback",
        metavar="URL",
        help="Redirect URL the provider sent you back to after signing in",
    )
    subparsers.add_parser("logout", help="Sign out")
    subparsers.add_parser("whoami", help="Show the signed-in user")
    subparsers.add_parser("list", help="List bookmarks, newest first")

    add = subparsers.add_parser("add", help="Add a bookmark")
    add.add_argument("title")
    add.add_argument("url")

    delete = subparsers.add_parser("delete", help="Delete a bookmark")
    delete.add_argument("bookmark_id")

    subparsers.add_parser("watch", help="Show bookmarks and follow changes live")
    return parser


async def _login(app: BookmarkApp, callback: str | None) -> int:
    if callback is None:
        print("Continue with provider:")
        print(app.auth.sign_in_url())
        print("\nThen run: bookmarks login --callback '<redirect URL>'")
        return 0
    try:
        app.auth.complete_sign_in(callback)
    except SessionError as e:
        print(e, file=sys.stderr)
        return 1
    if await app.refresh_session(live=False) is not View.MAIN:
        print("Signed in, but the session could not be confirmed.", file=sys.stderr)
        return 1
    print(f"Logged in as {app.session.email or app.session.user_id}")
    return 0


async def _watch(app: BookmarkApp) -> int:
    def redraw() -> None:
        print("\033[2J\033[H", end="")
        print(render(app.store))

    remove = app.store.add_listener(redraw)
    redraw()
    try:
        # Runs until interrupted; the subscriber drives all updates
        await asyncio.Event().wait()
    finally:
        remove()
    return 0


async def run(args: argparse.Namespace) -> int:
    """Execute one CLI command."""
    async with BookmarkApp(get_client_settings()) as app:
        if args.command == "login":
            return await _login(app, args.callback)

        if args.command == "logout":
            await app.logout()
            print("Logged out.")
            return 0

        view = await app.start(live=args.command == "watch")
        if view is View.LOGIN:
            print("Not signed in. Run: bookmarks login", file=sys.stderr)
            return 1

        if args.command == "whoami":
            print(app.session.email or app.session.user_id)
            return 0
        if args.command == "list":
            print(render(app.store))
            return 0
        if args.command == "add":
            app.gateway.form.title = args.title
            app.gateway.form.url = args.url
            bookmark = await app.add_bookmark()
            if bookmark is None:
                print("Bookmark not added.", file=sys.stderr)
                return 1
            print(f"Added {bookmark.id}")
            return 0
        if args.command == "delete":
            if not await app.delete_bookmark(args.bookmark_id):
                print("Bookmark not deleted.", file=sys.stderr)
                return 1
            print(f"Deleted {args.bookmark_id}")
            return 0
        if args.command == "watch":
            return await _watch(app)

    return 2


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    with contextlib.suppress(KeyboardInterrupt):
        return asyncio.run(run(args))
    return 130


if __name__ == "__main__":
    sys.exit(main())
