import asyncio
import functools
import json
import os
import tempfile
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import urlparse

import httpx
import pydantic
import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .api import RaindropAPI
from .config import Config, ConfigError, delete_config, get_token, save_config
from .errors import RaindropError, ValidationError
from .models import (
    Collection,
    CollectionCreate,
    CollectionUpdate,
    Raindrop,
    RaindropCreate,
    RaindropUpdate,
    Ref,
)
from .output import OutputFormat, render, with_spinner

app = typer.Typer(help="raindropctl: an agent-friendly CLI for Raindrop.io")
collection_app = typer.Typer(help="Manage collections")
tag_app = typer.Typer(help="Manage tags")
batch_app = typer.Typer(help="Batch operations on bookmarks")
console = Console()


class State:
    dry_run: bool = False
    output_format: OutputFormat = OutputFormat.toon


state = State()


@app.callback()
def main(
    dry_run: bool = typer.Option(False, "--dry-run", help="Log write actions instead of making real API requests."),
    format: OutputFormat = typer.Option(
        OutputFormat.toon, "--format", "-f", help="Output format: toon (default, most token-efficient) or json."
    ),
):
    """
    raindropctl: AI-native CLI for Raindrop.io
    """
    state.dry_run = dry_run
    state.output_format = format


def output_data(data: Any):
    print(render(data, state.output_format))


def emit_error(message: str, status: int, hint: Optional[str] = None):
    """Errors are always JSON on stdout so agents can parse them."""
    print(json.dumps({"error": message, "status": status, "hint": hint}, indent=2))
    raise typer.Exit(code=1)


def describe_input_error(e: pydantic.ValidationError) -> str:
    issues = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
    return "Invalid input: " + "; ".join(issues)


def parse_ids(ids: str) -> List[int]:
    try:
        id_list = [int(i.strip()) for i in ids.split(",") if i.strip()]
    except ValueError:
        raise ValidationError(f"Invalid IDs: {ids}", hint="Pass a comma-separated list of numeric IDs.")
    if not id_list:
        raise ValidationError("At least one ID is required", hint="Pass a comma-separated list of numeric IDs.")
    return id_list


def get_authenticated_api() -> RaindropAPI:
    token = get_token()
    if not token:
        emit_error(
            "Not logged in. Run `raindropctl login` first.",
            401,
            "Or set the RAINDROP_TOKEN environment variable.",
        )
    return RaindropAPI(token, dry_run=state.dry_run)


# Decorator to handle errors gracefully and force JSON output for errors
def handle_errors(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            await func(*args, **kwargs)
        except typer.Exit:
            raise
        except json.JSONDecodeError:
            emit_error(
                "Invalid JSON input provided to command.",
                400,
                "Ensure your JSON data is valid and properly escaped for the shell.",
            )
        except pydantic.ValidationError as e:
            emit_error(describe_input_error(e), 400, "Run `raindropctl schema` to see accepted fields.")
        except ConfigError as e:
            emit_error(str(e), 400)
        except RaindropError as e:
            emit_error(str(e), e.status_code, e.hint)
        except Exception as e:
            emit_error(f"Unexpected error: {str(e)}", 500, "Check the CLI logs or report this issue.")

    return wrapper


def run_with_api(action: Callable[[RaindropAPI], Awaitable[None]]):
    api = get_authenticated_api()

    @handle_errors
    async def run():
        async with api:
            await action(api)

    asyncio.run(run())


async def download_to_temp(url: str) -> str:
    """Download an image to a temporary file and return its path. The caller removes it."""
    async with httpx.AsyncClient(follow_redirects=True) as client:
        resp = await client.get(url)
    if not resp.is_success:
        raise RaindropError(
            f"Failed to download image from {url}: {resp.status_code}", 502, "Check that the image URL is reachable."
        )
    suffix = os.path.splitext(urlparse(url).path)[1] or ".png"
    fd, path = tempfile.mkstemp(prefix="raindropctl-cover-", suffix=suffix)
    with os.fdopen(fd, "wb") as f:
        f.write(resp.content)
    return path


async def upload_from_url(api: RaindropAPI, collection_id: int, url: str) -> Collection:
    file_path = await with_spinner(f"Downloading {url}...", download_to_temp(url))
    try:
        return await with_spinner(
            f"Uploading cover to collection {collection_id}...",
            api.upload_collection_cover(collection_id, file_path),
        )
    finally:
        if os.path.exists(file_path):
            os.remove(file_path)


@app.command()
def login(token: str = typer.Option(..., prompt="Enter your Raindrop.io API Token", hide_input=True)):
    """
    Login with your Raindrop.io API token (verifies before saving).

    Example: raindropctl login
    """

    @handle_errors
    async def verify():
        async with RaindropAPI(token) as api:
            user = await with_spinner("Verifying token...", api.get_user())
        save_config(Config(token=token))
        rprint(f"[bold green]Success![/bold green] Logged in as [bold]{escape(user.fullName)}[/bold].")

    asyncio.run(verify())


@app.command()
def logout():
    """
    Remove your stored credentials.

    Example: raindropctl logout
    """
    delete_config()
    rprint("[bold yellow]Logged out.[/bold yellow] Credentials removed.")


@app.command()
def whoami():
    """
    Show current user details.

    Example: raindropctl whoami
    """

    async def action(api: RaindropAPI):
        output_data(await with_spinner("Fetching user info...", api.get_user()))

    run_with_api(action)


@app.command()
def context():
    """
    Show high-level account context (User, Stats, Recent Activity).

    Example: raindropctl context
    """

    async def action(api: RaindropAPI):
        # Independent reads, fetched concurrently
        user, stats, recent, collections = await with_spinner(
            "Loading account context...",
            asyncio.gather(
                api.get_user(),
                api.get_stats(),
                api.search("", 0, limit=5),
                api.get_collections(),
            ),
        )
        output_data(
            {
                "user": [{"id": user.id, "name": user.fullName}],
                "stats": [
                    {
                        "total_bookmarks": next((s.count for s in stats if s.id == 0), 0),
                        "total_collections": len(collections),
                    }
                ],
                "structure": {
                    "root_collections": [
                        {"id": c.id, "title": c.title, "count": c.count} for c in collections if c.parent is None
                    ]
                },
                "recent_activity": [{"id": r.id, "title": r.title, "created": r.created} for r in recent],
            }
        )

    run_with_api(action)


@app.command()
def structure():
    """
    Show collections and tags.

    Example: raindropctl structure
    """

    async def action(api: RaindropAPI):
        collections, tags = await with_spinner(
            "Loading structure...", asyncio.gather(api.get_collections(), api.get_tags())
        )
        output_data(
            {
                "collections": [
                    {
                        "id": c.id,
                        "title": c.title,
                        "count": c.count,
                        "parent_id": c.parent_id,
                        "last_update": c.lastUpdate,
                    }
                    for c in collections
                ],
                "tags": [t.id for t in tags],
            }
        )

    run_with_api(action)


@app.command()
def schema():
    """
    Dump the JSON Schemas and usage examples (For AI context).

    Example: raindropctl schema
    """
    print(
        json.dumps(
            {
                "schemas": {
                    "Raindrop": Raindrop.model_json_schema(),
                    "RaindropCreate": RaindropCreate.model_json_schema(),
                    "RaindropUpdate": RaindropUpdate.model_json_schema(),
                    "Collection": Collection.model_json_schema(),
                    "CollectionCreate": CollectionCreate.model_json_schema(),
                    "CollectionUpdate": CollectionUpdate.model_json_schema(),
                },
                "usage_examples": {
                    "patch_update_title_tags": "raindropctl patch <id> '{\"title\": \"New Title\", \"tags\": [\"ai\", \"cli\"]}'",
                    "move_single_bookmark": "raindropctl patch <id> '{\"collection\": {\"$id\": <target_col_id>}}'",
                    "move_batch_bookmarks": "raindropctl batch update --ids 1,2 --collection <source_col_id> '{\"collection\": {\"$id\": <target_col_id>}}'",
                    "create_collection": "raindropctl collection create \"Research\" --public",
                    "set_collection_icon_search": "raindropctl collection set-icon <id> \"robot\"",
                    "set_collection_icon_url": "raindropctl collection cover <id> \"https://example.com/icon.png\"",
                    "search_with_tags": "raindropctl search \"python #important\" --limit 20",
                },
            },
            indent=2,
        )
    )


@app.command()
def search(
    query: str = typer.Argument("", help="Search query"),
    collection: int = typer.Option(0, help="Collection ID (0 unsorted, -1 all, -99 trash)"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of results"),
    pretty: bool = typer.Option(False, "--pretty", "-p", help="Display results in a formatted table for humans."),
):
    """
    Search for bookmarks (paginated).

    Examples:
    raindropctl search "python"
    raindropctl search "#important" --pretty
    """

    async def action(api: RaindropAPI):
        results = await with_spinner("Searching...", api.search(query, collection, limit))
        if pretty:
            # Rich Table for Humans
            table = Table(title=f"Search Results: {query}" if query else "Recent Bookmarks")
            table.add_column("ID", style="cyan")
            table.add_column("Title", style="white")
            table.add_column("Tags", style="green")
            table.add_column("Link", style="blue")

            for r in results:
                table.add_row(
                    str(r.id),
                    r.title[:50] + ("..." if len(r.title) > 50 else ""),
                    ", ".join(r.tags),
                    r.link[:50] + ("..." if len(r.link) > 50 else ""),
                )
            console.print(table)
            rprint(f"\n[dim]Total results: {len(results)}[/dim]")
        else:
            # Flatten tags and wrap in object for TOON efficiency/compatibility
            output_data(
                {
                    "items": [
                        {
                            "id": r.id,
                            "title": r.title,
                            "link": r.link,
                            "tags": ",".join(r.tags),
                            "type": r.type or "link",
                            "created": r.created,
                        }
                        for r in results
                    ]
                }
            )

    run_with_api(action)


@app.command()
def get(raindrop_id: int):
    """
    Get full details for a specific bookmark.

    Example: raindropctl get 123456
    """

    async def action(api: RaindropAPI):
        output_data(await with_spinner("Fetching bookmark...", api.get_raindrop(raindrop_id)))

    run_with_api(action)


@app.command()
def suggest(raindrop_id: int):
    """
    Get tag/collection suggestions for a bookmark.

    Example: raindropctl suggest 123456
    """

    async def action(api: RaindropAPI):
        output_data(await with_spinner("Getting suggestions...", api.get_suggestions(raindrop_id)))

    run_with_api(action)


@app.command()
def wayback(url: str):
    """
    Check if a URL is available in the Wayback Machine.

    Example: raindropctl wayback "https://google.com"
    """

    async def action(api: RaindropAPI):
        snapshot = await with_spinner("Checking Wayback Machine...", api.check_wayback(url))
        output_data({"url": url, "snapshot": snapshot})

    run_with_api(action)


@app.command()
def add(
    url: str,
    title: Optional[str] = None,
    tags: Optional[str] = typer.Option(None, help="Comma-separated tags"),
    collection: Optional[int] = typer.Option(None, help="Target collection ID"),
):
    """
    Add a new bookmark.

    Example: raindropctl add "https://example.com" --title "Example" --tags "tag1,tag2"
    """

    async def action(api: RaindropAPI):
        new_raindrop = RaindropCreate(
            link=url,
            title=title,
            tags=[t.strip() for t in tags.split(",") if t.strip()] if tags else None,
            collection=Ref(id=collection) if collection is not None else None,
        )
        output_data(await with_spinner("Adding bookmark...", api.add_raindrop(new_raindrop)))

    run_with_api(action)


@app.command()
def patch(raindrop_id: int, data: str):
    """
    Update a bookmark with a JSON patch.

    Example: raindropctl patch 123456 '{"title": "New Title", "tags": ["updated"]}'
    """

    async def action(api: RaindropAPI):
        update = RaindropUpdate.model_validate(json.loads(data))
        output_data(await with_spinner("Updating bookmark...", api.update_raindrop(raindrop_id, update)))

    run_with_api(action)


@app.command()
def delete(raindrop_id: int):
    """
    Delete a bookmark (moves it to trash).

    Example: raindropctl delete 123456
    """

    async def action(api: RaindropAPI):
        success = await with_spinner("Deleting bookmark...", api.delete_raindrop(raindrop_id))
        output_data({"success": success})

    run_with_api(action)


# Collection Commands
@collection_app.command("list")
def collection_list(
    root: bool = typer.Option(False, "--root", help="Only top-level collections"),
    children: bool = typer.Option(False, "--children", help="Only nested collections"),
):
    """
    List collections.

    Example: raindropctl collection list --root
    """

    async def action(api: RaindropAPI):
        if root:
            fetch = api.get_root_collections()
        elif children:
            fetch = api.get_child_collections()
        else:
            fetch = api.get_collections()
        output_data(await with_spinner("Fetching collections...", fetch))

    run_with_api(action)


@collection_app.command("create")
def collection_create(
    title: str,
    parent: Optional[int] = typer.Option(None, help="Parent collection ID"),
    public: Optional[bool] = typer.Option(None, "--public/--private", help="Collection visibility"),
    view: Optional[str] = typer.Option(None, help="View style (list, simple, grid, masonry)"),
):
    """
    Create a new collection.

    Example: raindropctl collection create "Research" --public
    """

    async def action(api: RaindropAPI):
        new_collection = CollectionCreate(
            title=title,
            parent=Ref(id=parent) if parent is not None else None,
            public=public,
            view=view,
        )
        output_data(await with_spinner("Creating collection...", api.create_collection(new_collection)))

    run_with_api(action)


@collection_app.command("update")
def collection_update(collection_id: int, data: str):
    """
    Update a collection with a JSON patch.

    Example: raindropctl collection update 123 '{"title": "New Name"}'
    """

    async def action(api: RaindropAPI):
        update = CollectionUpdate.model_validate(json.loads(data))
        output_data(await with_spinner("Updating collection...", api.update_collection(collection_id, update)))

    run_with_api(action)


@collection_app.command("delete")
def collection_delete(collection_id: int):
    """
    Delete a collection.

    Example: raindropctl collection delete 123
    """

    async def action(api: RaindropAPI):
        success = await with_spinner("Deleting collection...", api.delete_collection(collection_id))
        output_data({"success": success})

    run_with_api(action)


@collection_app.command("get")
def collection_get(collection_id: int):
    """
    Get details of a specific collection.

    Example: raindropctl collection get 123
    """

    async def action(api: RaindropAPI):
        output_data(await with_spinner("Fetching collection...", api.get_collection(collection_id)))

    run_with_api(action)


@collection_app.command("delete-multiple")
def collection_delete_multiple(ids: str = typer.Argument(..., help="Comma-separated list of collection IDs")):
    """
    Delete multiple collections at once.

    Example: raindropctl collection delete-multiple 123,456
    """

    async def action(api: RaindropAPI):
        id_list = parse_ids(ids)
        success = await with_spinner(f"Deleting {len(id_list)} collection(s)...", api.delete_collections(id_list))
        output_data({"success": success})

    run_with_api(action)


@collection_app.command("reorder")
def collection_reorder(sort: str = typer.Argument(..., help="Sort order: title, -title, -count")):
    """
    Reorder all collections.

    Example: raindropctl collection reorder title
    """

    async def action(api: RaindropAPI):
        success = await with_spinner("Reordering collections...", api.reorder_collections(sort))
        output_data({"success": success})

    run_with_api(action)


@collection_app.command("expand-all")
def collection_expand_all(expanded: bool = typer.Argument(..., help="True to expand, False to collapse")):
    """
    Expand or collapse all collections.

    Example: raindropctl collection expand-all True
    """

    async def action(api: RaindropAPI):
        success = await with_spinner("Updating collections...", api.expand_all_collections(expanded))
        output_data({"success": success})

    run_with_api(action)


@collection_app.command("merge")
def collection_merge(
    ids: str = typer.Argument(..., help="Comma-separated list of collection IDs to merge"),
    target_id: int = typer.Argument(..., help="Target collection ID"),
):
    """
    Merge multiple collections into one.

    Example: raindropctl collection merge 123,456 789
    """

    async def action(api: RaindropAPI):
        id_list = parse_ids(ids)
        success = await with_spinner("Merging collections...", api.merge_collections(id_list, target_id))
        output_data({"success": success})

    run_with_api(action)


@collection_app.command("cover")
def collection_cover(
    collection_id: int = typer.Argument(..., help="Collection ID"),
    source: str = typer.Argument(..., help="File path or URL of the cover image"),
):
    """
    Upload a cover image to a collection.

    Example: raindropctl collection cover 123 "https://example.com/icon.png"
    """

    async def action(api: RaindropAPI):
        if source.startswith(("http://", "https://")):
            result = await upload_from_url(api, collection_id, source)
        else:
            result = await with_spinner(
                f"Uploading cover to collection {collection_id}...",
                api.upload_collection_cover(collection_id, source),
            )
        output_data(result)

    run_with_api(action)


@collection_app.command("set-icon")
def collection_set_icon(
    collection_id: int = typer.Argument(..., help="Collection ID"),
    query: str = typer.Argument(..., help="Search query for icon (e.g. 'code', 'art')"),
):
    """
    Search for and set a collection icon using Raindrop's library.

    Example: raindropctl collection set-icon 123 "robot"
    """

    async def action(api: RaindropAPI):
        icons = await with_spinner(f"Searching icons for '{query}'...", api.search_covers(query))
        if not icons:
            emit_error(f"No icons found for '{query}'.", 404, "Try a broader search term.")
        # Pick the first one (usually best match)
        output_data(await upload_from_url(api, collection_id, icons[0]))

    run_with_api(action)


@collection_app.command("clean")
def collection_clean():
    """
    Remove all empty collections.

    Example: raindropctl collection clean
    """

    async def action(api: RaindropAPI):
        count = await with_spinner("Removing empty collections...", api.clean_empty_collections())
        output_data({"removed_count": count})

    run_with_api(action)


@collection_app.command("empty-trash")
def collection_empty_trash():
    """
    Empty the trash collection.

    Example: raindropctl collection empty-trash
    """

    async def action(api: RaindropAPI):
        success = await with_spinner("Emptying trash...", api.empty_trash())
        output_data({"success": success})

    run_with_api(action)


# Tag Commands
@tag_app.command("list")
def tag_list(collection: int = typer.Option(0, help="Collection ID (0 for global)")):
    """
    List tags with usage counts.

    Example: raindropctl tag list
    """

    async def action(api: RaindropAPI):
        tags = await with_spinner("Fetching tags...", api.get_tags(collection))
        output_data({"tags": [{"tag": t.id, "count": t.count} for t in tags]})

    run_with_api(action)


@tag_app.command("delete")
def tag_delete(
    tags: List[str] = typer.Argument(..., help="List of tags to delete"),
    collection: int = typer.Option(0, help="Collection ID (0 for global)"),
):
    """
    Delete tags from all bookmarks (global) or a specific collection.

    Example: raindropctl tag delete "old-tag" "useless-tag"
    """

    async def action(api: RaindropAPI):
        success = await with_spinner("Deleting tags...", api.delete_tags(tags, collection))
        output_data({"success": success})

    run_with_api(action)


@tag_app.command("rename")
def tag_rename(
    old_name: str = typer.Argument(..., help="Current tag name"),
    new_name: str = typer.Argument(..., help="New tag name"),
    collection: int = typer.Option(0, help="Collection ID (0 for global)"),
):
    """
    Rename a tag. Merges with existing tag if new name already exists.

    Example: raindropctl tag rename "work" "career"
    """

    async def action(api: RaindropAPI):
        success = await with_spinner("Renaming tag...", api.rename_tag(old_name, new_name, collection))
        output_data({"success": success})

    run_with_api(action)


# Batch Commands
@batch_app.command("update")
def batch_update(
    ids: str = typer.Option(..., help="Comma-separated list of bookmark IDs"),
    data: str = typer.Argument(..., help="JSON patch for updates"),
    collection: int = typer.Option(0, help="Collection ID"),
):
    """
    Update multiple bookmarks at once.

    Example: raindropctl batch update --ids 1,2,3 '{"tags": ["research"]}'
    """

    async def action(api: RaindropAPI):
        id_list = parse_ids(ids)
        update = RaindropUpdate.model_validate(json.loads(data))
        success = await with_spinner(
            f"Updating {len(id_list)} bookmark(s)...", api.batch_update_raindrops(collection, id_list, update)
        )
        output_data({"success": success})

    run_with_api(action)


@batch_app.command("delete")
def batch_delete(
    ids: str = typer.Option(..., help="Comma-separated list of bookmark IDs"),
    collection: int = typer.Option(0, help="Collection ID (use -99 for permanent delete)"),
):
    """
    Delete multiple bookmarks at once.

    Example: raindropctl batch delete --ids 1,2,3
    """

    async def action(api: RaindropAPI):
        id_list = parse_ids(ids)
        success = await with_spinner(
            f"Deleting {len(id_list)} bookmark(s)...", api.batch_delete_raindrops(collection, id_list)
        )
        output_data({"success": success})

    run_with_api(action)


app.add_typer(collection_app, name="collection")
app.add_typer(tag_app, name="tag")
app.add_typer(batch_app, name="batch")

if __name__ == "__main__":
    app()
