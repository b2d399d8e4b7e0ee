"""CLI for marginalia - local notes with a wiki-link graph."""

import argparse
import json
import os
import platform
import subprocess
import sys
from datetime import date
from pathlib import Path
from typing import Any

from . import __version__
from .core.daily import date_key
from .core.errors import MarginaliaError
from .lint import run_lint
from .observability import configure_logging
from .runtime import build_runtime


def cmd_new(args: argparse.Namespace, rt: Any) -> int:
    """Create a new note."""
    body = args.body or ""
    if args.stdin:
        body = sys.stdin.read()
    note = rt.coordinator.create_note(args.title, body, template=args.template)
    rt.coordinator.flush()

    if args.json:
        print(json.dumps({"id": note.id, "title": note.title}))
    elif not args.quiet:
        print(note.id)

    if args.edit:
        return _open_editor(rt, note.id)
    return 0


def _open_editor(rt: Any, nid: str) -> int:
    editor = os.environ.get("EDITOR", "vi")
    filepath = rt.vault.storage._path(nid)
    subprocess.run([editor, str(filepath)])
    rt.coordinator.note_changed_externally(nid)
    rt.coordinator.flush()
    return 0


def cmd_show(args: argparse.Namespace, rt: Any) -> int:
    """Print the note body to stdout."""
    note = rt.coordinator.get_note(args.id)
    if args.json:
        print(json.dumps({"id": note.id, "title": note.title, "body": note.body}))
    else:
        print(note.body)
    return 0


def cmd_edit(args: argparse.Namespace, rt: Any) -> int:
    """Change title/body, or open the note in $EDITOR."""
    if args.title is None and args.body is None and not args.stdin:
        rt.coordinator.get_note(args.id)
        return _open_editor(rt, args.id)

    body = sys.stdin.read() if args.stdin else args.body
    rt.coordinator.update_note(args.id, title=args.title, body=body)
    rt.coordinator.flush()
    return 0


def cmd_rename(args: argparse.Namespace, rt: Any) -> int:
    """Retitle a note and re-resolve every note that mentions either title."""
    old = rt.coordinator.get_note(args.id).title
    rt.coordinator.rename_note(args.id, args.title)
    counts = rt.coordinator.flush()
    if not args.quiet:
        print(f"Renamed {args.id}: {old!r} -> {args.title.strip()!r} ({counts['resolved']} notes re-resolved)")
    return 0


def cmd_rm(args: argparse.Namespace, rt: Any) -> int:
    """Delete a note; links to it become dangling."""
    rt.coordinator.get_note(args.id)

    if not args.yes:
        response = input(f"Delete note {args.id}? [y/N] ")
        if response.lower() not in ("y", "yes"):
            print("Aborted")
            return 0

    backlinks = rt.coordinator.get_backlinks(args.id, context=False)
    rt.coordinator.delete_note(args.id)
    if not args.quiet:
        print(f"Deleted {args.id}")
        if backlinks:
            print(f"{len(backlinks)} links now dangling")
    return 0


def cmd_ls(args: argparse.Namespace, rt: Any) -> int:
    """List notes."""
    metas = rt.coordinator.catalog.all()
    if args.daily:
        metas = [m for m in metas if m.date_key]
    if args.orphans:
        idx = rt.coordinator.index
        metas = [m for m in metas if not idx.get_inbound(m.id) and not idx.get_outbound(m.id)]

    if args.json:
        print(json.dumps([{"id": m.id, "title": m.title, "kind": m.kind.value} for m in metas], indent=2))
    else:
        for m in metas:
            print(f"{m.id}\t{m.title}")
    return 0


def cmd_links(args: argparse.Namespace, rt: Any) -> int:
    """Show outgoing links in document order."""
    links = rt.coordinator.get_outbound_links(args.id)
    if args.json:
        print(json.dumps([
            {"target": l.target_note_id, "raw_target": l.raw_target, "dangling": l.dangling}
            for l in links
        ], indent=2))
    else:
        for link in links:
            mark = " (deleted)" if link.dangling else ""
            print(f"{link.target_note_id}\t[[{link.raw_target}]]{mark}")
    return 0


def cmd_backlinks(args: argparse.Namespace, rt: Any) -> int:
    """Show incoming links with context."""
    views = rt.coordinator.get_backlinks(args.id)
    if args.json:
        print(json.dumps([
            {
                "source": v.source_note_id,
                "title": v.source_title,
                "raw_target": v.raw_target,
                "dangling": v.dangling,
                "context": v.context,
            }
            for v in views
        ], indent=2))
    else:
        for v in views:
            mark = " (deleted target)" if v.dangling else ""
            print(f"\n{v.source_note_id}\t{v.source_title}{mark}:")
            if v.context:
                print(f"  {v.context}")
    return 0


def cmd_resolve(args: argparse.Namespace, rt: Any) -> int:
    """Resolve link text to a note ID, as a click would."""
    nid = rt.coordinator.resolve_link_click(args.text, create=args.create)
    if nid is None:
        if not args.quiet:
            print(f"No note titled '{args.text}'", file=sys.stderr)
            for meta in rt.coordinator.catalog.all():
                if args.text.strip().casefold() in meta.title.casefold():
                    print(f"  {meta.id}\t{meta.title}", file=sys.stderr)
        return 2
    print(nid)
    return 0


def _read_content(args: argparse.Namespace) -> str | None:
    return sys.stdin.read() if args.stdin else args.content


def _template_json(t: Any) -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "is_default": t.is_default,
    }


def cmd_templates_ls(args: argparse.Namespace, rt: Any) -> int:
    """List built-in and custom templates."""
    templates = rt.templates.list()
    if args.json:
        print(json.dumps([_template_json(t) for t in templates], indent=2))
    else:
        for t in templates:
            mark = " (built-in)" if t.is_default else ""
            print(f"{t.id}\t{t.name}{mark}")
    return 0


def cmd_templates_show(args: argparse.Namespace, rt: Any) -> int:
    t = rt.templates.get(args.id)
    if args.json:
        print(json.dumps({**_template_json(t), "content": t.content}))
    else:
        print(t.content)
    return 0


def cmd_templates_add(args: argparse.Namespace, rt: Any) -> int:
    """Save a custom template; its id is derived from the name."""
    t = rt.templates.save(args.name, _read_content(args) or "", description=args.description or "")
    if args.json:
        print(json.dumps(_template_json(t)))
    elif not args.quiet:
        print(t.id)
    return 0


def cmd_templates_edit(args: argparse.Namespace, rt: Any) -> int:
    rt.templates.update(
        args.id, name=args.name, content=_read_content(args), description=args.description
    )
    return 0


def cmd_templates_rm(args: argparse.Namespace, rt: Any) -> int:
    rt.templates.delete(args.id)
    if not args.quiet:
        print(f"Deleted template {args.id}")
    return 0


def cmd_daily(args: argparse.Namespace, rt: Any) -> int:
    """Get or create the daily note for a date (default: today)."""
    if args.date:
        try:
            day = date.fromisoformat(args.date)
        except ValueError:
            print(f"Invalid date '{args.date}', expected YYYY-MM-DD", file=sys.stderr)
            return 1
        note = rt.daily.get_or_create_daily(day)
    else:
        note = rt.daily.today()
    rt.coordinator.flush()

    if args.json:
        print(json.dumps({"id": note.id, "title": note.title, "date": note.date_key}))
    elif not args.quiet:
        print(f"{note.id}\t{note.title}")

    if args.edit:
        return _open_editor(rt, note.id)
    return 0


def cmd_agenda(args: argparse.Namespace, rt: Any) -> int:
    """Print calendar events for a date."""
    day = date.fromisoformat(args.date) if args.date else date.today()
    events = rt.daily.agenda(day)
    if args.json:
        print(json.dumps([
            {"title": e.title, "start": e.start_time.isoformat(), "end": e.end_time.isoformat()}
            for e in events
        ], indent=2))
    else:
        if not events and not args.quiet:
            print(f"No events on {date_key(day)}")
        for e in events:
            print(f"{e.start_time:%H:%M}-{e.end_time:%H:%M}\t{e.title}")
    return 0


def cmd_lint(args: argparse.Namespace, rt: Any) -> int:
    """Report dangling links, title collisions and unresolved notes."""
    findings = run_lint(rt.coordinator)

    if args.json:
        print(json.dumps([
            {"note_id": f.note_id, "severity": f.severity, "message": f.message}
            for f in findings
        ], indent=2))
    elif not args.quiet:
        for f in findings:
            print(f"{f.note_id}: [{f.severity}] {f.message}")

    return 1 if any(f.severity == "error" for f in findings) else 0


def cmd_doctor(args: argparse.Namespace, rt: Any) -> int:
    """Run diagnostics on the vault and the link graph."""
    issues = []

    vault_path = rt.vault.storage.root
    if not vault_path.exists():
        print(f"✗ Vault does not exist: {vault_path}")
        issues.append("vault_missing")
    elif not vault_path.is_dir():
        print(f"✗ Vault is not a directory: {vault_path}")
        issues.append("vault_not_dir")
    else:
        print(f"✓ Vault exists: {vault_path}")

        try:
            test_file = vault_path / ".marginalia_test_write"
            test_file.touch()
            test_file.unlink()
            print("✓ Vault is writable")
        except OSError as e:
            print(f"✗ Vault is not writable: {e}")
            issues.append("vault_not_writable")

    files = len(rt.vault.list_ids())
    indexed = len(rt.coordinator.catalog)
    if files == indexed:
        print(f"✓ All {files} note files loaded")
    else:
        print(f"✗ Loaded {indexed}/{files} note files")
        issues.append("unreadable_notes")

    problems = rt.coordinator.index.check_symmetry()
    if problems:
        print(f"✗ Graph is not symmetric ({len(problems)} problems)")
        for p in problems[:10]:
            print(f"  {p}")
        issues.append("asymmetric_graph")
    else:
        print("✓ Inbound links mirror outbound links")

    pending = rt.coordinator.pending()
    if pending:
        print(f"✗ {len(pending)} notes have unresolved links")
        issues.append("pending")

    stats = rt.coordinator.index.stats()
    print("\nCounts:")
    print(f"  Notes: {indexed}")
    print(f"  Links: {stats['links']}")
    print(f"  Dangling: {stats['dangling']}")
    print(f"  Title collisions: {len(rt.coordinator.catalog.collisions())}")

    if issues:
        print("\nRecommendations:")
        if "unreadable_notes" in issues:
            print("  Check notes for frontmatter syntax errors")
        if "pending" in issues:
            print("  Check vault permissions, then run: marg doctor")
        return 1
    print("\n✓ All checks passed")
    return 0


def cmd_watch(args: argparse.Namespace, rt: Any) -> int:
    """Watch vault for changes and keep the graph current."""
    from .watch import watch_vault

    return watch_vault(
        vault_path=rt.vault.storage.root,
        coordinator=rt.coordinator,
        debounce_ms=args.debounce_ms,
        quiet=args.quiet,
        json_output=args.json,
    )


def cmd_serve(args: argparse.Namespace, rt: Any) -> int:
    """Start local JSON API server."""
    import uvicorn

    from .api.app import create_app, generate_token

    token_arg = args.token
    if token_arg == "auto":
        token = generate_token()
        print(f"Generated bearer token: {token}")
        print(f"Use in requests: Authorization: Bearer {token}")
    elif token_arg == "none":
        print("Warning: Running without authentication. Only use in trusted environments.")
        token = None
    else:
        token = token_arg

    app = create_app(rt, token=token, enable_cors=args.cors)

    print(f"Starting server on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    return 0


def version_string() -> str:
    return f"marginalia {__version__} (python {platform.python_version()}, platform {platform.system().lower()})"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="marg", description="Marginalia CLI")
    parser.add_argument("--version", action="version", version=version_string())
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: search cwd/marginalia.toml, vault/marginalia.toml)",
    )
    parser.add_argument(
        "--vault",
        type=Path,
        default=None,
        help="Path to vault directory (overrides config)",
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING (overrides config)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimize output")
    parser.add_argument("--json", action="store_true", help="Machine-readable output")

    subparsers = parser.add_subparsers(dest="cmd", required=True)

    parser_new = subparsers.add_parser("new", help="Create a new note")
    parser_new.add_argument("title")
    parser_new.add_argument("--body", default=None, help="Initial body")
    parser_new.add_argument("--stdin", action="store_true", help="Read body from stdin")
    parser_new.add_argument("--edit", action="store_true", help="Open in $EDITOR")
    parser_new.add_argument("--template", default=None, help="Template ID (see: marg templates ls)")

    parser_show = subparsers.add_parser("show", help="Print note body")
    parser_show.add_argument("id")

    parser_edit = subparsers.add_parser("edit", help="Edit a note (no options: $EDITOR)")
    parser_edit.add_argument("id")
    parser_edit.add_argument("--title", default=None)
    parser_edit.add_argument("--body", default=None)
    parser_edit.add_argument("--stdin", action="store_true", help="Read body from stdin")

    parser_rename = subparsers.add_parser("rename", help="Change a note's title")
    parser_rename.add_argument("id")
    parser_rename.add_argument("title")

    parser_rm = subparsers.add_parser("rm", help="Delete a note")
    parser_rm.add_argument("id")
    parser_rm.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    parser_ls = subparsers.add_parser("ls", help="List notes")
    parser_ls.add_argument("--daily", action="store_true", help="Only daily notes")
    parser_ls.add_argument("--orphans", action="store_true", help="Only notes without links")

    parser_links = subparsers.add_parser("links", help="Outgoing links of a note")
    parser_links.add_argument("id")

    parser_backlinks = subparsers.add_parser("backlinks", help="Incoming links with context")
    parser_backlinks.add_argument("id")

    parser_resolve = subparsers.add_parser("resolve", help="Resolve link text to note ID")
    parser_resolve.add_argument("text")
    parser_resolve.add_argument("--create", action="store_true", help="Create the note when missing")

    parser_daily = subparsers.add_parser("daily", help="Get or create a daily note")
    parser_daily.add_argument("date", nargs="?", default=None, help="YYYY-MM-DD (default: today)")
    parser_daily.add_argument("--edit", action="store_true", help="Open in $EDITOR")

    parser_agenda = subparsers.add_parser("agenda", help="Calendar events of a day")
    parser_agenda.add_argument("date", nargs="?", default=None, help="YYYY-MM-DD (default: today)")

    parser_templates = subparsers.add_parser("templates", help="Manage note templates")
    templates_sub = parser_templates.add_subparsers(dest="templates_cmd", required=True)

    templates_sub.add_parser("ls", help="List templates")

    parser_templates_show = templates_sub.add_parser("show", help="Print template content")
    parser_templates_show.add_argument("id", help="Template ID")

    parser_templates_add = templates_sub.add_parser("add", help="Save a custom template")
    parser_templates_add.add_argument("name", help="Template name")
    parser_templates_add.add_argument("--content", default=None)
    parser_templates_add.add_argument("--stdin", action="store_true", help="Read content from stdin")
    parser_templates_add.add_argument("--description", default=None)

    parser_templates_edit = templates_sub.add_parser("edit", help="Change a custom template")
    parser_templates_edit.add_argument("id", help="Template ID")
    parser_templates_edit.add_argument("--name", default=None)
    parser_templates_edit.add_argument("--content", default=None)
    parser_templates_edit.add_argument("--stdin", action="store_true", help="Read content from stdin")
    parser_templates_edit.add_argument("--description", default=None)

    parser_templates_rm = templates_sub.add_parser("rm", help="Delete a custom template")
    parser_templates_rm.add_argument("id", help="Template ID")

    subparsers.add_parser("lint", help="Report dangling links and title collisions")
    subparsers.add_parser("doctor", help="Run diagnostics on vault and graph")

    parser_watch = subparsers.add_parser("watch", help="Watch vault for changes")
    parser_watch.add_argument("--debounce-ms", type=int, default=150, help="Debounce window")

    parser_serve = subparsers.add_parser("serve", help="Start local JSON API server")
    parser_serve.add_argument("--host", default="127.0.0.1")
    parser_serve.add_argument("--port", type=int, default=8765)
    parser_serve.add_argument(
        "--token", default="auto", help="Bearer token, 'auto' to generate, 'none' to disable"
    )
    parser_serve.add_argument("--cors", action="store_true", help="Enable CORS")

    return parser


HANDLERS = {
    "new": cmd_new,
    "show": cmd_show,
    "edit": cmd_edit,
    "rename": cmd_rename,
    "rm": cmd_rm,
    "ls": cmd_ls,
    "links": cmd_links,
    "backlinks": cmd_backlinks,
    "resolve": cmd_resolve,
    "daily": cmd_daily,
    "agenda": cmd_agenda,
    "lint": cmd_lint,
    "doctor": cmd_doctor,
    "watch": cmd_watch,
    "serve": cmd_serve,
}

TEMPLATE_HANDLERS = {
    "ls": cmd_templates_ls,
    "show": cmd_templates_show,
    "add": cmd_templates_add,
    "edit": cmd_templates_edit,
    "rm": cmd_templates_rm,
}


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        rt = build_runtime(vault_path=args.vault, config_path=args.config)
        configure_logging(args.log_level or rt.config.logging.level)
        if args.cmd == "templates":
            handler = TEMPLATE_HANDLERS[args.templates_cmd]
        else:
            handler = HANDLERS[args.cmd]
        exit_code = handler(args, rt)
    except (MarginaliaError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
