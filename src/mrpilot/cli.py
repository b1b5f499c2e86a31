"""Command-line entry point: ``mrpilot <subcommand>``."""

import argparse
import asyncio
import json
import sys
from importlib import metadata
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from mrpilot.agents.state import MrOptions
from mrpilot.clients.figma import FigmaClient, group_by_category
from mrpilot.clients.gitlab import GitLabClient, new_merge_request_url, parse_merge_request_url, parse_remote_url
from mrpilot.clients.jira import JiraClient
from mrpilot.commit import COMMIT_TYPES, agent_commit
from mrpilot.config import Settings, load_settings
from mrpilot.errors import MrPilotError, ValidationError
from mrpilot.git_ops import GitExecutor
from mrpilot.knowledge import load_knowledge
from mrpilot.labels import LabelDecider, build_label_sources, parse_label_arg
from mrpilot.models.report import MergeRequestDescriptionInfo
from mrpilot.nodes.labels_node import build_label_context
from mrpilot.report.codec import normalize_report
from mrpilot.report.storage import load_description_info, save_description_info
from mrpilot.review import filter_ai_review_comments
from mrpilot.signature import append_signature
from mrpilot.task import description_info_gaps, set_gate, start_task
from mrpilot.tickets import extract_ticket_from_branch, parse_ticket_reference
from mrpilot.workflow import build_clients, build_initial_state, run_workflow


def _ticket_or_branch(git: GitExecutor, ticket: Optional[str]) -> str:
    ticket = ticket or extract_ticket_from_branch(git.current_branch())
    if not ticket:
        raise ValidationError("No ticket given and none found in the branch name", hint="Pass --ticket=FE-1234")
    return ticket


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def cmd_start_task(args, settings: Settings) -> int:
    git = GitExecutor(settings.project_root)
    info = start_task(git, JiraClient(settings), args.ticket, args.source)
    print(f"{info.ticket} [{info.issue_type}] {info.summary}")
    print(f"Branch: {info.branch}")
    if info.description:
        print(f"\n{info.description}")
    print("\nSuggested steps:")
    for number, step in enumerate(info.suggested_steps, 1):
        print(f"  {number}. {step}")
    return 0


def cmd_task_info(args, settings: Settings) -> int:
    git = GitExecutor(settings.project_root)
    ticket = _ticket_or_branch(git, args.ticket)

    if args.confirm_plan or args.confirm_result:
        set_gate(
            git,
            ticket,
            plan_confirmed=True if args.confirm_plan else None,
            result_verified=True if args.confirm_result else None,
        )
        logger.success(f"Updated start-task gates for {ticket}")

    info = load_description_info(git.root, ticket)
    changed = False
    if args.target is not None or args.scope is not None or args.test is not None:
        info = info or MergeRequestDescriptionInfo.default(ticket)
        for field_name in ("target", "scope", "test"):
            value = getattr(args, field_name)
            if value is not None:
                setattr(info.plan, field_name, value.strip())
        changed = True
    if args.json:
        raw = args.json if args.json.lstrip().startswith("{") else Path(args.json).read_text(encoding="utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"--json is neither a file nor valid JSON: {e}") from e
        info = info or MergeRequestDescriptionInfo.default(ticket)
        info.report = normalize_report({"ticket": ticket, **data})
        changed = True
    if changed:
        info = MergeRequestDescriptionInfo.model_validate(info.to_json())
        path = save_description_info(git.root, info)
        logger.success(f"Saved {path}")

    if args.verify:
        gaps = description_info_gaps(info)
        if gaps:
            for gap in gaps:
                logger.error(gap)
            return 1
        logger.success(f"Description info for {ticket} is complete")
    if args.read:
        if info is None:
            logger.error(f"No description info for {ticket}")
            return 1
        _print_json(info.to_json())
    return 0


def cmd_commit(args, settings: Settings) -> int:
    git = GitExecutor(settings.project_root)
    agent_commit(
        git,
        args.type,
        args.ticket,
        args.message,
        skip_lint=args.skip_lint,
        auto_push=args.auto_push,
        base_branch=settings.default_target_branch,
    )
    if args.auto_push:
        host, project_path = parse_remote_url(git.remote_url())
        url = new_merge_request_url(host, project_path, git.current_branch(), settings.default_target_branch)
        print(f"Create a merge request: {url}")
    return 0


def _mr_options(args) -> MrOptions:
    return MrOptions(
        target=getattr(args, "target", None),
        reviewer=args.reviewer,
        labels=parse_label_arg(args.labels),
        ticket=getattr(args, "ticket", None),
        draft=not getattr(args, "no_draft", False),
        review=not args.no_review,
        rebase=not getattr(args, "no_rebase", False),
        yes=getattr(args, "yes", False),
        auto_fill=args.auto_fill,
        label_strategy=getattr(args, "label_strategy", "heuristic"),
        keep_task_files=args.keep_task_files,
    )


def _run_mr(args, settings: Settings, mode: str) -> int:
    final_state = run_workflow(build_initial_state(settings, _mr_options(args), mode))
    # Nodes already logged each warning as it was recorded.
    warnings = final_state.get("warnings") or []
    if warnings:
        logger.info(f"Finished with {len(warnings)} warning(s)")
    if final_state.get("errors"):
        return 1
    merge_request = final_state.get("merge_request") or {}
    print(merge_request.get("web_url", ""))
    return 0


def cmd_create_mr(args, settings: Settings) -> int:
    return _run_mr(args, settings, "create")


def cmd_update_mr(args, settings: Settings) -> int:
    return _run_mr(args, settings, "update")


def cmd_labels(args, settings: Settings) -> int:
    git = GitExecutor(settings.project_root)
    clients = build_clients(settings, git)
    ticket = _ticket_or_branch(git, args.ticket)
    target = args.target or settings.default_target_branch
    git.fetch(target)

    sources = build_label_sources(
        args.label_strategy,
        clients["jira"],
        settings.fe_ticket_prefix,
        llm=clients["llm"],
        knowledge=load_knowledge(git.root),
    )
    decision = asyncio.run(LabelDecider(sources).decide(build_label_context(git, settings, ticket, target)))
    for warning in decision.warnings:
        logger.warning(warning)

    result = {
        "ticket": ticket,
        "labels": decision.labels.to_list(),
        "releaseBranch": decision.release_branch,
        "targetBranch": args.target or decision.release_branch or target,
        "authError": str(decision.auth_error) if decision.auth_error else None,
    }
    if args.json:
        _print_json(result)
    else:
        print(f"Labels: {', '.join(result['labels']) or '(none)'}")
        print(f"Target branch: {result['targetBranch']}")
    if decision.auth_error is not None:
        logger.error(str(decision.auth_error))
        return 1
    return 0


def cmd_fix_comment(args, settings: Settings) -> int:
    base_url, project_path, iid = parse_merge_request_url(args.url)
    host = base_url.split("://", 1)[-1]
    gitlab = GitLabClient(host, settings.require("gitlab_token"), project_path)

    if args.reply:
        if not args.body:
            raise ValidationError("--reply needs --body")
        owner = GitExecutor(settings.project_root).user_name()
        gitlab.reply_to_discussion(iid, args.reply, append_signature(args.body, settings.agent_display_name, owner))
        logger.success(f"Replied to discussion {args.reply}")
        return 0
    if args.resolve:
        gitlab.resolve_discussion(iid, args.resolve)
        logger.success(f"Resolved discussion {args.resolve}")
        return 0
    if args.show_file:
        merge_request = gitlab.get_merge_request(iid)
        content = gitlab.get_file_raw(args.show_file, merge_request["source_branch"])
        if content is None:
            logger.error(f"{args.show_file} not found on {merge_request['source_branch']}")
            return 1
        print(content)
        return 0

    comments = filter_ai_review_comments(gitlab.list_discussions(iid), settings.ai_review_bot_username)
    if args.json:
        _print_json([comment.__dict__ for comment in comments])
        return 0
    if not comments:
        print("No unresolved AI review comments")
    for comment in comments:
        location = f"{comment.file_path}:{comment.line_number}" if comment.file_path else "(general)"
        print(f"[{comment.discussion_id}] {location}")
        print(f"  {comment.body}")
        for reply in comment.replies:
            print(f"    > @{reply['author']}: {reply['body']}")
    return 0


def cmd_jira_comment(args, settings: Settings) -> int:
    jira = JiraClient(settings)
    body = args.body if args.body is not None else Path(args.body_file).read_text(encoding="utf-8")
    owner = GitExecutor(settings.project_root).user_name()
    comment = jira.add_comment(args.ticket, body, settings.agent_display_name, owner)
    ticket = parse_ticket_reference(args.ticket)
    print(jira.comment_url(ticket, comment.get("id", "")))
    return 0


def cmd_jira_transition(args, settings: Settings) -> int:
    jira = JiraClient(settings)
    if args.to is None:
        transitions = jira.transitions(args.ticket)
        if args.json:
            _print_json([t.__dict__ for t in transitions])
            return 0
        for t in transitions:
            print(f"[{t.id}] {t.name} -> {t.to}")
        return 0
    moved = jira.transition(args.ticket, args.to)
    logger.success(f"{parse_ticket_reference(args.ticket)} moved to {moved.to or moved.name}")
    return 0


def cmd_figma_dsm(args, settings: Settings) -> int:
    tokens = FigmaClient(settings).color_tokens(args.file, args.node)
    grouped = group_by_category(tokens)
    if args.json:
        _print_json({category: [t.__dict__ for t in items] for category, items in grouped.items()})
        return 0
    for category, items in grouped.items():
        print(f"{category} ({len(items)})")
        for token in items:
            print(f"  {token.name}: {token.hex}")
    return 0


def _add_mr_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--reviewer", help="GitLab username of the reviewer (default: MR_REVIEWER)")
    parser.add_argument("--labels", help="Extra labels, comma separated")
    parser.add_argument("--no-review", action="store_true", help="Do not submit the AI code review")
    parser.add_argument("--auto-fill", action="store_true", help="Fill empty report fields with the LLM")
    parser.add_argument("--keep-task-files", action="store_true", help="Keep .cursor/tmp/<ticket> afterwards")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mrpilot", description="Jira/GitLab merge request workflow helper")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--project-root", help="Repository root (default: discovered from the current directory)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {metadata.version('mrpilot')}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start-task", help="Start a feature branch for a Jira ticket")
    start.add_argument("--ticket", required=True)
    start.add_argument("--source", default="main", help="Branch to start from")
    start.set_defaults(handler=cmd_start_task)

    info = subparsers.add_parser("task-info", help="Read or edit the ticket's MR description info")
    info.add_argument("--ticket")
    info.add_argument("--read", action="store_true")
    info.add_argument("--target", help="Plan: what the change should achieve")
    info.add_argument("--scope", help="Plan: what the change touches")
    info.add_argument("--test", help="Plan: how it will be tested")
    info.add_argument("--json", help="Development report as a JSON string or file")
    info.add_argument("--verify", action="store_true", help="Exit non-zero when the info is incomplete")
    info.add_argument("--confirm-plan", action="store_true")
    info.add_argument("--confirm-result", action="store_true")
    info.set_defaults(handler=cmd_task_info)

    commit = subparsers.add_parser("commit", help="Create a conventional commit")
    commit.add_argument("--type", required=True, choices=COMMIT_TYPES)
    commit.add_argument("--ticket", required=True)
    commit.add_argument("--message", required=True)
    commit.add_argument("--skip-lint", action="store_true")
    commit.add_argument("--auto-push", action="store_true")
    commit.set_defaults(handler=cmd_commit)

    create = subparsers.add_parser("create-mr", help="Rebase, push and open a merge request")
    create.add_argument("--target", help="Target branch (default: main, or the release branch for hotfixes)")
    create.add_argument("--ticket", help="Ticket to use instead of the one in the branch name")
    create.add_argument("--no-draft", action="store_true")
    create.add_argument("--no-rebase", action="store_true")
    create.add_argument("--yes", action="store_true", help="Accept a non-release target for a hotfix")
    create.add_argument("--label-strategy", choices=("heuristic", "llm", "none"), default="heuristic")
    _add_mr_arguments(create)
    create.set_defaults(handler=cmd_create_mr)

    update = subparsers.add_parser("update-mr", help="Refresh the open merge request for this branch")
    _add_mr_arguments(update)
    update.set_defaults(handler=cmd_update_mr)

    labels = subparsers.add_parser("labels", help="Show the label decision for this branch")
    labels.add_argument("--ticket")
    labels.add_argument("--target")
    labels.add_argument("--label-strategy", choices=("heuristic", "llm", "none"), default="heuristic")
    labels.add_argument("--json", action="store_true")
    labels.set_defaults(handler=cmd_labels)

    fix = subparsers.add_parser("fix-comment", help="Work through unresolved AI review comments")
    fix.add_argument("url", help="Merge request URL")
    fix.add_argument("--reply", metavar="DISCUSSION_ID")
    fix.add_argument("--body")
    fix.add_argument("--resolve", metavar="DISCUSSION_ID")
    fix.add_argument("--show-file", metavar="PATH")
    fix.add_argument("--json", action="store_true")
    fix.set_defaults(handler=cmd_fix_comment)

    comment = subparsers.add_parser("jira-comment", help="Post a signed comment on a Jira ticket")
    comment.add_argument("ticket", help="Ticket key or browse URL")
    body = comment.add_mutually_exclusive_group(required=True)
    body.add_argument("--body", help="Comment text")
    body.add_argument("--body-file", help="File holding the comment text")
    comment.set_defaults(handler=cmd_jira_comment)

    transition = subparsers.add_parser("jira-transition", help="List or apply Jira workflow transitions")
    transition.add_argument("ticket", help="Ticket key or browse URL")
    transition.add_argument("--to", help="Transition id, name or destination status; omit to list them")
    transition.add_argument("--json", action="store_true")
    transition.set_defaults(handler=cmd_jira_transition)

    figma = subparsers.add_parser("figma-dsm", help="Extract color tokens from a Figma node")
    figma.add_argument("--file", required=True, help="Figma file key")
    figma.add_argument("--node", required=True, help="Node id, e.g. 1-2")
    figma.add_argument("--json", action="store_true")
    figma.set_defaults(handler=cmd_figma_dsm)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    load_dotenv()
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")

    try:
        settings = load_settings(args.project_root)
        code = args.handler(args, settings)
    except MrPilotError as e:
        logger.error(str(e))
        if e.hint:
            logger.error(e.hint)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
