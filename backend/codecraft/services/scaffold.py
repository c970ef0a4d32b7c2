"""
Learner scaffolds derived from a verified reference.

Pure post-processing: no model call. For Python the public function bodies of
the reference are replaced with STUDENT TODO blocks; other languages keep the
generated starter code.
"""

import ast

from codecraft.models.problem import Pedagogy, ProblemDraft, Workspace, WorkspaceFile

TODO_BEGIN = "# BEGIN STUDENT TODO"
TODO_END = "# END STUDENT TODO"

SCAFFOLD_LEVELS = {"easy": 80, "medium": 50, "hard": 20}

_FUNCS = (ast.FunctionDef, ast.AsyncFunctionDef)


def _is_docstring(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and isinstance(stmt.value.value, str)
    )


def _public_functions(tree: ast.Module) -> list:
    out = []
    for node in tree.body:
        if isinstance(node, _FUNCS) and not node.name.startswith("_"):
            out.append(node)
        elif isinstance(node, ast.ClassDef) and not node.name.startswith("_"):
            out.extend(
                item for item in node.body
                if isinstance(item, _FUNCS) and (not item.name.startswith("_") or item.name == "__init__")
            )
    return out


def scaffold_python(source: str) -> str | None:
    """Stub out public function bodies. None if nothing could be stubbed."""
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return None

    lines = source.splitlines()
    changed = False
    for fn in sorted(_public_functions(tree), key=lambda n: n.lineno, reverse=True):
        body = fn.body[1:] if _is_docstring(fn.body[0]) else fn.body
        if not body:
            continue
        first, last = body[0], body[-1]
        start = min([first.lineno] + [d.lineno for d in getattr(first, "decorator_list", [])])
        if start == fn.lineno:
            continue
        indent = " " * first.col_offset
        lines[start - 1 : last.end_lineno] = [
            f"{indent}{TODO_BEGIN}",
            f"{indent}# Implement {fn.name}.",
            f"{indent}raise NotImplementedError",
            f"{indent}{TODO_END}",
        ]
        changed = True

    return "\n".join(lines) + "\n" if changed else None


def _scaffold_workspace(workspace: Workspace, reference: Workspace) -> Workspace:
    ref_files = reference.as_file_map()
    files = []
    for f in workspace.files:
        content = f.content
        if f.role == "entry" and f.path.endswith(".py") and f.path in ref_files:
            content = scaffold_python(ref_files[f.path]) or content
        files.append(WorkspaceFile(path=f.path, role=f.role, content=content))
    return Workspace(files=files, entrypoint=workspace.entrypoint)


def pedagogy_for(draft: ProblemDraft) -> Pedagogy:
    return Pedagogy(
        scaffold_level=SCAFFOLD_LEVELS.get(draft.difficulty, 50),
        learning_goal=f"Practice {draft.topic_tag} with a {draft.difficulty} problem.",
        hints_enabled=draft.difficulty != "hard",
    )


def apply_guided_scaffold(draft: ProblemDraft) -> ProblemDraft:
    update: dict = {"pedagogy": pedagogy_for(draft)}
    if draft.language == "python":
        if draft.reference_workspace is not None and draft.workspace is not None:
            update["workspace"] = _scaffold_workspace(draft.workspace, draft.reference_workspace)
        elif draft.reference_solution:
            scaffold = scaffold_python(draft.reference_solution)
            if scaffold:
                update["starter_code"] = scaffold
    return draft.model_copy(update=update)
