from __future__ import annotations

import argparse
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import get_log_level, load_engine_config
from .errors import (
    ConcurrentModificationError,
    CycleError,
    EngineError,
    NoParentError,
    NoPrecedingSiblingError,
    NotFoundError,
)
from .logging_utils import configure_logging, pretty
from .outline.engine import OutlineEngine
from .outline.model import EntityKind, ProjectType
from .render import render_summary, render_tree

EXIT_BAD_INPUT = 2
EXIT_NOT_FOUND = 3
EXIT_CYCLE = 4
EXIT_STRUCTURE = 5
EXIT_CONFLICT = 6

_KINDS = [k.value for k in EntityKind]
_NESTING_KINDS = [EntityKind.ACTION.value, EntityKind.FOLDER.value, EntityKind.TAG.value]


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(args: argparse.Namespace) -> OutlineEngine:
    return OutlineEngine.from_project(_resolve_project_dir(args.project_dir))


def _emit(payload: Any) -> int:
    sys.stdout.write(pretty(payload) + '\n')
    return 0


def _add(args: argparse.Namespace) -> int:
    action = _engine(args).create_action(
        args.title,
        parent_id=args.parent,
        index=args.index,
        project_id=args.project,
        note=args.note,
        flagged=args.flag,
        tag_ids=args.tag,
        defer_date=args.defer,
        due_date=args.due,
        estimated_minutes=args.estimate,
        repeat_mode=args.repeat_mode,
        repeat_interval=args.repeat_interval,
        blocked_by=args.blocked_by,
    )
    return _emit({'action': action.to_dict()})


def _list(args: argparse.Namespace) -> int:
    actions = _engine(args).list_actions(
        status=args.status,
        project_id=args.project,
        tag_id=args.tag,
        flagged=True if args.flagged else None,
        inbox=args.inbox,
        due_before=args.due_before,
        due_after=args.due_after,
        available=args.available,
    )
    return _emit({'actions': [a.to_dict() for a in actions]})


def _folder_add(args: argparse.Namespace) -> int:
    folder = _engine(args).create_folder(args.name, parent_id=args.parent, index=args.index)
    return _emit({'folder': folder.to_dict()})


def _tag_add(args: argparse.Namespace) -> int:
    tag = _engine(args).create_tag(
        args.name,
        parent_id=args.parent,
        index=args.index,
        available_from=args.available_from,
        available_until=args.available_until,
    )
    return _emit({'tag': tag.to_dict()})


def _project_add(args: argparse.Namespace) -> int:
    project = _engine(args).create_project(
        args.name,
        folder_id=args.folder,
        index=args.index,
        project_type=args.type,
        review_interval=args.review_interval,
    )
    return _emit({'project': project.to_dict()})


def _project_available(args: argparse.Namespace) -> int:
    actions = _engine(args).project_available_actions(args.project_id)
    return _emit({'actions': [a.to_dict() for a in actions]})


def _review(args: argparse.Namespace) -> int:
    return _emit({'project': _engine(args).review_project(args.project_id).to_dict()})


def _review_due(args: argparse.Namespace) -> int:
    return _emit({'projects': [p.to_dict() for p in _engine(args).projects_due_for_review()]})


def _project_complete(args: argparse.Namespace) -> int:
    return _emit({'project': _engine(args).complete_project(args.project_id).to_dict()})


def _project_drop(args: argparse.Namespace) -> int:
    return _emit({'project': _engine(args).drop_project(args.project_id).to_dict()})


def _project_reactivate(args: argparse.Namespace) -> int:
    return _emit({'project': _engine(args).reactivate_project(args.project_id).to_dict()})


def _tree(args: argparse.Namespace) -> int:
    engine = _engine(args)
    roots = [engine.subtree(args.kind, args.id)] if args.id else engine.project_tree(args.kind)
    if args.format == 'text':
        sys.stdout.write(render_tree(roots, f'{args.kind.capitalize()} outline'))
        return 0
    return _emit({'tree': [node.model_dump() for node in roots]})


def _move(args: argparse.Namespace) -> int:
    return _emit({'moved': asdict(_engine(args).move(args.kind, args.id, args.index))})


def _reparent(args: argparse.Namespace) -> int:
    result = _engine(args).reparent(args.kind, args.id, args.parent, args.index)
    return _emit({'moved': asdict(result)})


def _indent(args: argparse.Namespace) -> int:
    return _emit({'moved': asdict(_engine(args).indent(args.kind, args.id))})


def _outdent(args: argparse.Namespace) -> int:
    return _emit({'moved': asdict(_engine(args).outdent(args.kind, args.id))})


def _block(args: argparse.Namespace) -> int:
    added = _engine(args).add_block(args.action_id, args.blocker_id)
    return _emit({'added': added, 'action_id': args.action_id, 'blocker_id': args.blocker_id})


def _unblock(args: argparse.Namespace) -> int:
    removed = _engine(args).remove_block(args.action_id, args.blocker_id)
    return _emit({'removed': removed, 'action_id': args.action_id, 'blocker_id': args.blocker_id})


def _status(args: argparse.Namespace) -> int:
    status = _engine(args).blocking_status(args.action_id)
    return _emit({'action_id': args.action_id, **status.model_dump()})


def _complete(args: argparse.Namespace) -> int:
    completion = _engine(args).complete_action(args.action_id)
    return _emit({
        'action': completion.action.to_dict(),
        'next_action': completion.next_action.to_dict() if completion.next_action else None,
    })


def _drop(args: argparse.Namespace) -> int:
    return _emit({'action': _engine(args).drop_action(args.action_id).to_dict()})


def _reactivate(args: argparse.Namespace) -> int:
    return _emit({'action': _engine(args).reactivate_action(args.action_id).to_dict()})


def _delete(args: argparse.Namespace) -> int:
    engine = _engine(args)
    kind = EntityKind(args.kind)
    if kind == EntityKind.ACTION:
        result = engine.delete_action(args.id, cascade=args.cascade)
    elif kind == EntityKind.FOLDER:
        result = engine.delete_folder(args.id, cascade=args.cascade)
    elif kind == EntityKind.TAG:
        result = engine.delete_tag(args.id, cascade=args.cascade)
    else:
        if args.cascade:
            raise ValueError('--cascade does not apply to projects; their actions move to the inbox')
        result = engine.delete_project(args.id)
    return _emit({'deleted': asdict(result)})


def _cleanup(args: argparse.Namespace) -> int:
    return _emit({'deleted': _engine(args).cleanup_completed(args.older_than_days)})


def _summary(args: argparse.Namespace) -> int:
    summary = _engine(args).summary()
    if args.format == 'text':
        sys.stdout.write(render_summary(summary))
        return 0
    return _emit(summary)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='actionflow - outline-based personal task manager')
    parser.add_argument('--project-dir', default=None, help='Directory holding .actionflow/ (default: current working directory)')
    parser.add_argument('--log-level', default=None, help='Log level (default: config logging.level or INFO)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    add = subparsers.add_parser('add', help='Create an action')
    add.add_argument('title')
    add.add_argument('--parent', default=None, help='Parent action id')
    add.add_argument('--index', default=None, type=int, help='Index in the sibling group (default: append)')
    add.add_argument('--project', default=None)
    add.add_argument('--note', default='')
    add.add_argument('--flag', action='store_true')
    add.add_argument('--tag', action='append', default=None)
    add.add_argument('--defer', default=None, help='Defer date (ISO 8601)')
    add.add_argument('--due', default=None, help='Due date (ISO 8601)')
    add.add_argument('--estimate', default=None, type=int, help='Estimated minutes')
    add.add_argument('--repeat-mode', default=None, choices=['fixed', 'defer_another', 'due_again'])
    add.add_argument('--repeat-interval', default=None, help='e.g. 1d, 2w, 1m, 1y')
    add.add_argument('--blocked-by', action='append', default=None)
    add.set_defaults(func=_add)

    lst = subparsers.add_parser('list', help='List actions')
    lst.add_argument('--status', default=None, choices=['active', 'completed', 'dropped'])
    lst.add_argument('--project', default=None)
    lst.add_argument('--tag', default=None)
    lst.add_argument('--flagged', action='store_true')
    lst.add_argument('--inbox', action='store_true')
    lst.add_argument('--due-before', default=None)
    lst.add_argument('--due-after', default=None)
    lst.add_argument('--available', action='store_true')
    lst.set_defaults(func=_list)

    folder_add = subparsers.add_parser('folder-add', help='Create a folder')
    folder_add.add_argument('name')
    folder_add.add_argument('--parent', default=None)
    folder_add.add_argument('--index', default=None, type=int)
    folder_add.set_defaults(func=_folder_add)

    tag_add = subparsers.add_parser('tag-add', help='Create a tag')
    tag_add.add_argument('name')
    tag_add.add_argument('--parent', default=None)
    tag_add.add_argument('--index', default=None, type=int)
    tag_add.add_argument('--available-from', default=None)
    tag_add.add_argument('--available-until', default=None)
    tag_add.set_defaults(func=_tag_add)

    project_add = subparsers.add_parser('project-add', help='Create a project')
    project_add.add_argument('name')
    project_add.add_argument('--folder', default=None)
    project_add.add_argument('--index', default=None, type=int)
    project_add.add_argument('--type', default='parallel', choices=[t.value for t in ProjectType])
    project_add.add_argument('--review-interval', default=None, help='e.g. 1w, 1m')
    project_add.set_defaults(func=_project_add)

    for name, handler, help_text in (
        ('project-available', _project_available, 'List the actions of a project that can be worked on now'),
        ('review', _review, 'Mark a project reviewed and schedule the next review'),
        ('project-complete', _project_complete, 'Complete a project'),
        ('project-drop', _project_drop, 'Drop a project'),
        ('project-reactivate', _project_reactivate, 'Make a completed or dropped project active again'),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('project_id')
        sub.set_defaults(func=handler)

    review_due = subparsers.add_parser('review-due', help='List active projects due for review')
    review_due.set_defaults(func=_review_due)

    tree = subparsers.add_parser('tree', help='Print a nested tree')
    tree.add_argument('--kind', default='action', choices=_NESTING_KINDS)
    tree.add_argument('--id', default=None, help='Only the subtree rooted at this id')
    tree.add_argument('--format', default='json', choices=['json', 'text'])
    tree.set_defaults(func=_tree)

    move = subparsers.add_parser('move', help='Reorder a node within its sibling group')
    move.add_argument('kind', choices=_KINDS)
    move.add_argument('id')
    move.add_argument('index', type=int)
    move.set_defaults(func=_move)

    reparent = subparsers.add_parser('reparent', help='Move a node under a new parent')
    reparent.add_argument('kind', choices=_KINDS)
    reparent.add_argument('id')
    reparent.add_argument('--parent', default=None, help='New parent id (default: root level)')
    reparent.add_argument('--index', default=None, type=int)
    reparent.set_defaults(func=_reparent)

    indent = subparsers.add_parser('indent', help='Nest a node under its preceding sibling')
    indent.add_argument('kind', choices=_NESTING_KINDS)
    indent.add_argument('id')
    indent.set_defaults(func=_indent)

    outdent = subparsers.add_parser('outdent', help='Move a node up one level, after its parent')
    outdent.add_argument('kind', choices=_NESTING_KINDS)
    outdent.add_argument('id')
    outdent.set_defaults(func=_outdent)

    block = subparsers.add_parser('block', help='Make an action wait on another')
    block.add_argument('action_id')
    block.add_argument('blocker_id')
    block.set_defaults(func=_block)

    unblock = subparsers.add_parser('unblock', help='Remove a blocked-by edge')
    unblock.add_argument('action_id')
    unblock.add_argument('blocker_id')
    unblock.set_defaults(func=_unblock)

    status = subparsers.add_parser('status', help='Show the blocking status of an action')
    status.add_argument('action_id')
    status.set_defaults(func=_status)

    for name, handler, help_text in (
        ('complete', _complete, 'Complete an action'),
        ('drop', _drop, 'Drop an action'),
        ('reactivate', _reactivate, 'Make a completed or dropped action active again'),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('action_id')
        sub.set_defaults(func=handler)

    delete = subparsers.add_parser('delete', help='Delete an entity')
    delete.add_argument('kind', choices=_KINDS)
    delete.add_argument('id')
    delete.add_argument('--cascade', action='store_true', help='Delete the whole subtree (actions, folders and tags only)')
    delete.set_defaults(func=_delete)

    cleanup = subparsers.add_parser('cleanup', help='Delete old completed actions')
    cleanup.add_argument('--older-than-days', default=None, type=int)
    cleanup.set_defaults(func=_cleanup)

    summary = subparsers.add_parser('summary', help='Show entity counts')
    summary.add_argument('--format', default='json', choices=['json', 'text'])
    summary.set_defaults(func=_summary)

    return parser


def _exit_code(exc: Exception) -> int:
    if isinstance(exc, NotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(exc, CycleError):
        return EXIT_CYCLE
    if isinstance(exc, (NoPrecedingSiblingError, NoParentError)):
        return EXIT_STRUCTURE
    if isinstance(exc, ConcurrentModificationError):
        return EXIT_CONFLICT
    if isinstance(exc, ValueError):
        return EXIT_BAD_INPUT
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1

    if args.log_level:
        config = {'logging': {'level': args.log_level}}
    else:
        config, _ = load_engine_config(_resolve_project_dir(args.project_dir))
    configure_logging(get_log_level(config))

    try:
        return int(handler(args) or 0)
    except (EngineError, ValueError) as exc:
        logger.debug('{} rejected: {}', args.command, exc)
        sys.stderr.write(f'error: {exc}\n')
        return _exit_code(exc)


if __name__ == '__main__':
    sys.exit(main())
