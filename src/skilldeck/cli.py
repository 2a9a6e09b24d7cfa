from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
import time
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

from ._version import __version__
from .agents import AgentType, parse_agent
from .config import Config, coerce_value, config_path, load_config, load_file_config, save_config
from .errors import RegistryHTTPError, SkilldeckError
from .git import github_web_url
from .install_flow import InstallFlow, Phase
from .manager import SkillManager
from .models import Skill, UpdateState, UpdateStatus
from .registry import RegistryClient
from .scheduler import RefreshScheduler


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Config file < environment (applied in load_config) < CLI flags.
    cfg = base
    if getattr(args, "home", None):
        cfg = replace(cfg, home=args.home)
    if getattr(args, "git", None):
        cfg = replace(cfg, git_binary=args.git)
    if getattr(args, "timeout_s", None) is not None:
        cfg = replace(cfg, timeout_s=args.timeout_s)
    return cfg


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _agents_arg(values: list[str] | None) -> list[AgentType]:
    return [parse_agent(v) for v in (values or [])]


def _status_label(status: UpdateStatus) -> str:
    if status.state is UpdateState.ERROR:
        return f"error: {status.message}"
    return status.state.value


def _skill_payload(skill: Skill, status: UpdateStatus) -> dict[str, Any]:
    entry = skill.lock_entry
    return {
        "id": skill.id,
        "name": skill.display_name,
        "description": skill.manifest.description,
        "author": skill.manifest.author,
        "version": skill.manifest.version,
        "scope": skill.scope.id,
        "path": str(skill.canonical_path),
        "installations": [
            {
                "agent": inst.agent.value,
                "path": str(inst.path),
                "symlink": inst.is_symlink,
                "inherited": inst.is_inherited,
                "inherited_from": inst.inherited_from.value if inst.inherited_from else None,
            }
            for inst in skill.installations
        ],
        "source": entry.source if entry else None,
        "source_url": entry.source_url if entry else None,
        "linked": entry.linked if entry else False,
        "folder_hash": entry.skill_folder_hash if entry else None,
        "local_commit": skill.local_commit_hash,
        "update": status.state.value,
        "update_error": status.message,
        "remote_commit": skill.remote_commit_hash,
    }


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="skilldeck",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Manage agent skills from one shared store (~/.agents/skills).",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              SKILLDECK_HOME, SKILLDECK_GIT, SKILLDECK_CONFIG_PATH
            """
        ),
    )
    p.add_argument("--home", help="Home directory to resolve agent paths against")
    p.add_argument("--git", help="git binary to use")
    p.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Log to stderr (-vv for debug)")
    p.add_argument("--version", action="version", version=f"skilldeck {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show effective config")
    cfg_set = cfg_sub.add_parser("set", help="Set one config field")
    cfg_set.add_argument("key", choices=sorted(Config.__dataclass_fields__))  # type: ignore[attr-defined]
    cfg_set.add_argument("value")

    ls = sub.add_parser("list", aliases=["ls"], help="List installed skills")
    ls.add_argument("--agent", help="Only skills visible to this agent")
    ls.add_argument("--search", help="Filter by name, description, source or author")
    ls.add_argument("--json", action="store_true", help="Print JSON")

    show = sub.add_parser("show", help="Show one skill")
    show.add_argument("skill")
    show.add_argument("--body", action="store_true", help="Also print the SKILL.md body")
    show.add_argument("--json", action="store_true", help="Print JSON")

    agents = sub.add_parser("agents", help="Show detected agents")
    agents.add_argument("--json", action="store_true", help="Print JSON")

    install = sub.add_parser("install", aliases=["i"], help="Install skills from a git repository")
    install.add_argument("repo", help="owner/repo or https:// URL")
    install.add_argument("--skill", "-s", action="append", default=[], help="Skill id to install (repeatable)")
    install.add_argument("--all", action="store_true", help="Install every skill found, even already installed ones")
    install.add_argument(
        "--agent",
        "-a",
        action="append",
        default=[],
        help="Agent to link the skill into (repeatable, default: claude-code)",
    )
    install.add_argument("--list", action="store_true", help="Only list the skills found in the repository")
    install.add_argument("--json", action="store_true", help="Print JSON")

    assign = sub.add_parser("assign", help="Link a skill into agents")
    assign.add_argument("skill")
    assign.add_argument("agents", nargs="+")

    unassign = sub.add_parser("unassign", help="Remove a skill's link from agents")
    unassign.add_argument("skill")
    unassign.add_argument("agents", nargs="+")

    toggle = sub.add_parser("toggle", help="Flip a skill's assignment for one agent")
    toggle.add_argument("skill")
    toggle.add_argument("agent")

    delete = sub.add_parser("delete", aliases=["rm"], help="Delete a skill and all its links")
    delete.add_argument("skill")

    check = sub.add_parser("check", help="Check skills for upstream updates")
    check.add_argument("skill", nargs="?", help="Only this skill (errors are reported)")
    check.add_argument("--json", action="store_true", help="Print JSON")

    update = sub.add_parser("update", help="Update skills from their source repository")
    update.add_argument("skills", nargs="*")
    update.add_argument("--all", action="store_true", help="Check everything and update what changed")

    link = sub.add_parser("link", help="Associate a skill with the repository it came from")
    link.add_argument("skill")
    link.add_argument("repo", help="owner/repo or https:// URL")

    history = sub.add_parser("history", help="Recently scanned repositories")
    history.add_argument("--json", action="store_true", help="Print JSON")

    search = sub.add_parser("search", help="Search the public skills registry")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=50)
    search.add_argument("--json", action="store_true", help="Print JSON")

    fetch = sub.add_parser("fetch", help="Print a registry skill's SKILL.md")
    fetch.add_argument("source", help="owner/repo")
    fetch.add_argument("skill_id")

    watch = sub.add_parser("watch", help="Refresh whenever a skills directory changes")
    watch.add_argument("--poll-s", type=float, default=1.0, help="Polling interval in seconds")

    return p


def _manager(args: argparse.Namespace) -> tuple[Config, SkillManager]:
    cfg = _merge_cfg(load_config(), args)
    return cfg, SkillManager.from_config(cfg)


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        _print_json(asdict(_merge_cfg(load_config(), args)))
        return 0

    if args.subcmd == "set":
        # Environment overrides are not persisted.
        base = load_file_config()
        new_cfg = replace(base, **{args.key: coerce_value(args.key, args.value)})
        saved = save_config(new_cfg)
        print(f"Saved: {saved}")
        return 0

    raise AssertionError("unreachable")


def cmd_list(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    if args.search:
        skills = manager.search(args.search)
    else:
        skills = manager.skills
    if args.agent:
        agent = parse_agent(args.agent)
        skills = [s for s in skills if s.installation_for(agent) is not None]

    if args.json:
        _print_json([_skill_payload(s, manager.update_status(s.id)) for s in skills])
        return 0

    if not skills:
        print("No skills installed.")
        return 0
    rows = [["ID", "NAME", "SCOPE", "AGENTS", "SOURCE"]]
    for s in skills:
        agents = ",".join(
            inst.agent.value + ("*" if inst.is_inherited else "") for inst in s.installations
        )
        source = s.lock_entry.source if s.lock_entry else "-"
        rows.append([s.id, s.display_name, s.scope.display_name, agents or "-", source])
    _print_table(rows)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    skill = manager.get_skill(args.skill)
    status = manager.update_status(skill.id)
    payload = _skill_payload(skill, status)
    if args.json:
        if args.body:
            payload["body"] = skill.markdown_body
        _print_json(payload)
        return 0

    print(f"id: {skill.id}")
    print(f"name: {skill.display_name}")
    if skill.manifest.description:
        print(f"description: {skill.manifest.description}")
    for key in ("author", "version", "license", "allowed_tools"):
        value = getattr(skill.manifest, key)
        if value:
            print(f"{key.replace('_', '-')}: {value}")
    print(f"scope: {skill.scope.display_name}")
    print(f"path: {skill.canonical_path}")
    entry = skill.lock_entry
    if entry is not None:
        web = github_web_url(entry.source_url)
        print(f"source: {entry.source}" + (" (linked)" if entry.linked else ""))
        print(f"source_url: {web or entry.source_url}")
        print(f"folder_hash: {entry.skill_folder_hash}")
        print(f"installed_at: {entry.installed_at}")
        print(f"updated_at: {entry.updated_at}")
    if skill.local_commit_hash:
        print(f"local_commit: {skill.local_commit_hash}")
    if skill.installations:
        rows = [["AGENT", "PATH", "KIND"]]
        for inst in skill.installations:
            if inst.is_inherited and inst.inherited_from is not None:
                kind = f"inherited from {inst.inherited_from.value}"
            else:
                kind = "symlink" if inst.is_symlink else "directory"
            rows.append([inst.agent.value, str(inst.path), kind])
        _print_table(rows)
    if args.body and skill.markdown_body:
        print()
        print(skill.markdown_body)
    return 0


def cmd_agents(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    statuses = manager.agents
    if args.json:
        _print_json(
            [
                {
                    "agent": a.agent.value,
                    "name": a.agent.display_name,
                    "installed": a.is_installed,
                    "config_dir_exists": a.config_directory_exists,
                    "skills_dir": str(manager.layout.skills_dir(a.agent)),
                    "skills_dir_exists": a.skills_directory_exists,
                    "skill_count": a.skill_count,
                }
                for a in statuses
            ]
        )
        return 0
    rows = [["AGENT", "NAME", "INSTALLED", "SKILLS DIR", "SKILLS"]]
    for a in statuses:
        skills_dir = str(manager.layout.skills_dir(a.agent)) if a.skills_directory_exists else "-"
        rows.append(
            [a.agent.value, a.agent.display_name, "yes" if a.is_installed else "no", skills_dir, str(a.skill_count)]
        )
    _print_table(rows)
    return 0


def cmd_install(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    flow = InstallFlow(manager)
    try:
        discovered = flow.fetch(args.repo)
        if flow.phase is Phase.ERRORED:
            raise SkilldeckError(flow.error_message or "Fetch failed")

        if args.list:
            if args.json:
                _print_json(
                    [
                        {
                            "id": d.id,
                            "name": d.manifest.name,
                            "description": d.manifest.description,
                            "path": d.folder_path,
                            "installed": d.id in flow.already_installed,
                        }
                        for d in discovered
                    ]
                )
                return 0
            rows = [["ID", "PATH", "INSTALLED", "DESCRIPTION"]]
            for d in discovered:
                installed = "yes" if d.id in flow.already_installed else "no"
                rows.append([d.id, d.folder_path or ".", installed, d.manifest.description[:60]])
            _print_table(rows)
            return 0

        if args.all:
            flow.select(d.id for d in discovered)
        elif args.skill:
            flow.select(args.skill)
        if not flow.selected:
            print(f"Nothing to install from {flow.source} (all {len(discovered)} skills already installed).")
            return 0

        agents = _agents_arg(args.agent) or [AgentType.CLAUDE_CODE]
        count = flow.install_selected(agents)
    finally:
        if flow.phase is not Phase.COMPLETED:
            flow.cancel()

    if args.json:
        _print_json(
            {
                "source": flow.source,
                "installed": count,
                "failed": [{"id": skill_id, "error": msg} for skill_id, msg in flow.failed],
            }
        )
        return 0 if not flow.failed else 1
    print(f"Installed {count} of {count + len(flow.failed)} skills from {flow.source}")
    for skill_id, msg in flow.failed:
        print(f"failed: {skill_id}: {msg}")
    return 0 if not flow.failed else 1


def cmd_assign(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    for agent in _agents_arg(args.agents):
        link = manager.assign_skill(args.skill, agent)
        print(f"linked: {link}")
    return 0


def cmd_unassign(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    for agent in _agents_arg(args.agents):
        if manager.unassign_skill(args.skill, agent):
            print(f"unlinked: {agent.value}")
        else:
            print(f"not linked: {agent.value}")
    return 0


def cmd_toggle(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    agent = parse_agent(args.agent)
    manager.toggle_assignment(args.skill, agent)
    skill = manager.get_skill(args.skill)
    state = "assigned" if skill.installation_for(agent) is not None else "unassigned"
    print(f"{skill.id}: {state} for {agent.value}")
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    manager.delete_skill(args.skill)
    print(f"deleted: {args.skill}")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    if args.skill:
        result = manager.check_for_update(args.skill)
        if args.json:
            _print_json(asdict(result))
            return 0
        if result.remote_tree_hash is None:
            print(f"{args.skill}: no source repository")
        elif result.has_update:
            print(f"{args.skill}: update available ({(result.remote_commit_hash or '')[:12]})")
        else:
            print(f"{args.skill}: up to date")
        return 0

    statuses = manager.check_all_updates()
    if args.json:
        _print_json({k: {"state": v.state.value, **({"message": v.message} if v.message else {})} for k, v in statuses.items()})
        return 0
    if not statuses:
        print("No skills with a source repository.")
        return 0
    rows = [["ID", "STATUS"]]
    for skill_id in sorted(statuses, key=str.lower):
        rows.append([skill_id, _status_label(statuses[skill_id])])
    _print_table(rows)
    updates = sum(1 for s in statuses.values() if s.state is UpdateState.HAS_UPDATE)
    errors = sum(1 for s in statuses.values() if s.state is UpdateState.ERROR)
    print(f"{len(statuses)} checked, {updates} with updates, {errors} failed")
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    targets = list(args.skills)
    if args.all:
        statuses = manager.check_all_updates()
        targets += [k for k, v in sorted(statuses.items()) if v.state is UpdateState.HAS_UPDATE and k not in targets]
    if not targets:
        print("Nothing to update.")
        return 0

    failed = 0
    for skill_id in targets:
        try:
            entry = manager.update_skill(skill_id)
        except SkilldeckError as e:
            if len(targets) == 1:
                raise
            print(f"failed: {skill_id}: {e}", file=sys.stderr)
            failed += 1
            continue
        print(f"updated: {skill_id} ({entry.skill_folder_hash[:12]})")
    return 1 if failed else 0


def cmd_link(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    manager.link_skill_to_repository(args.skill, args.repo)
    entry = manager.get_skill(args.skill).lock_entry
    print(f"linked: {args.skill} -> {entry.source if entry else args.repo}")
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    _, manager = _manager(args)
    history = manager.repo_history()
    if args.json:
        _print_json([h.to_dict() for h in history])
        return 0
    rows = [["SOURCE", "URL", "SCANNED"]]
    for h in history:
        rows.append([h.source, h.source_url, h.scanned_at])
    _print_table(rows)
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    with RegistryClient(base_url=cfg.registry_url, timeout_s=cfg.timeout_s) as client:
        results = client.search(args.query, limit=args.limit)
    if args.json:
        _print_json([asdict(r) | {"repo_url": r.repo_url} for r in results])
        return 0
    rows = [["SKILL", "SOURCE", "INSTALLS"]]
    for r in results:
        rows.append([r.skill_id, r.source, r.formatted_installs])
    _print_table(rows)
    return 0


def cmd_fetch(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    with RegistryClient(base_url=cfg.registry_url, timeout_s=cfg.timeout_s) as client:
        print(client.fetch_skill_content(args.source, args.skill_id))
    return 0


def _tree_signature(dirs: list[Path]) -> tuple[tuple[str, float], ...]:
    sig: list[tuple[str, float]] = []
    for d in dirs:
        try:
            sig.append((str(d), d.stat().st_mtime))
            for child in d.iterdir():
                sig.append((str(child), child.lstat().st_mtime))
        except OSError:
            continue
    return tuple(sorted(sig))


def cmd_watch(args: argparse.Namespace) -> int:
    cfg, manager = _manager(args)
    dirs = [manager.layout.shared_skills_dir] + [manager.layout.skills_dir(a) for a in manager.layout.linkable_agents()]

    def _refresh() -> None:
        skills = manager.refresh()
        print(f"refreshed: {len(skills)} skills", flush=True)

    scheduler = RefreshScheduler(_refresh, interval=cfg.debounce_s)
    last = _tree_signature(dirs)
    _refresh()
    try:
        while True:
            time.sleep(args.poll_s)
            current = _tree_signature(dirs)
            if current != last:
                last = current
                scheduler.notify()
    except KeyboardInterrupt:
        return 0
    finally:
        scheduler.close()


def _format_http_error(err: RegistryHTTPError) -> str:
    body = err.body.strip()
    if len(body) > 200:
        body = body[:200] + "..."
    return f"HTTP {err.status_code}" + (f": {body}" if body else "")


def _setup_logging(verbosity: int) -> None:
    if verbosity <= 0:
        return
    level = logging.DEBUG if verbosity > 1 else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


_COMMANDS = {
    "config": cmd_config,
    "list": cmd_list,
    "ls": cmd_list,
    "show": cmd_show,
    "agents": cmd_agents,
    "install": cmd_install,
    "i": cmd_install,
    "assign": cmd_assign,
    "unassign": cmd_unassign,
    "toggle": cmd_toggle,
    "delete": cmd_delete,
    "rm": cmd_delete,
    "check": cmd_check,
    "update": cmd_update,
    "link": cmd_link,
    "history": cmd_history,
    "search": cmd_search,
    "fetch": cmd_fetch,
    "watch": cmd_watch,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    try:
        handler = _COMMANDS.get(args.cmd)
        if handler is None:
            raise AssertionError("unreachable")
        return handler(args)
    except RegistryHTTPError as e:
        print(f"error: {_format_http_error(e)}", file=sys.stderr)
        return 1
    except SkilldeckError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
