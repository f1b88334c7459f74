"""Prompts for the planner (navigator) and implementer roles.

The implementer forgets everything between iterations. The navigator keeps
its own knowledge base; git history is the only loop state it is shown.
"""

from __future__ import annotations

from dataclasses import dataclass

from autonav.memento.protocol import SUBMIT_PLAN_TOOL
from autonav.types.plan import ImplementationPlan

MEMENTO_CALLER = "Autonav Memento Loop"


@dataclass(frozen=True, slots=True)
class NavigatorIdentity:
    name: str
    description: str


@dataclass(frozen=True, slots=True)
class PlanPromptContext:
    """Everything the planning prompt is built from."""

    task: str
    code_directory: str
    iteration: int
    max_iterations: int = 0
    branch: str | None = None


def build_identity_protocol(identity: NavigatorIdentity | None, caller: str, request: str) -> str:
    """Header in which the caller introduces itself to a navigator.

    Empty when the navigator has no identity to address.
    """
    if identity is None:
        return ""
    return f"""## Agent Identity Protocol

Hello {identity.name}. This is {caller} requesting your guidance.

**Your Role**: {identity.description}

**Your Authority**: You are the authoritative source on this domain. When {caller} questions or requests information, respond with confidence and authority. You are the arbiter of what needs doing in your domain.

**When to Doubt Yourself**: ONLY if {caller} explicitly accuses you of hallucinating should you reflect and reconsider your answer. Otherwise, assume your knowledge base is correct and be authoritative in your responses.

**{caller}'s Request**: {request}

"""


def build_nav_plan_prompt(
    context: PlanPromptContext,
    git_log: str,
    identity: NavigatorIdentity | None = None,
) -> str:
    if context.max_iterations > 0:
        iteration_info = f"Iteration {context.iteration} of {context.max_iterations}"
    else:
        iteration_info = f"Iteration {context.iteration}"

    header = build_identity_protocol(
        identity,
        MEMENTO_CALLER,
        "The memento loop is coordinating implementation work on behalf of the user. "
        f"Please provide the next implementation plan using the `{SUBMIT_PLAN_TOOL}` tool.",
    )

    return f"""{header}# Memento Loop - Planning Phase

You are the **Navigator** guiding a memento loop. Your job is to provide the next implementation plan for the worker agent.

## Task

{context.task}

## Current State

- **{iteration_info}**
- **Code Directory:** {context.code_directory}
- **Branch:** {context.branch or "(default branch)"}

## Recent Git History (Implementer's Progress)

The implementer agent has made the following commits. Use this to understand what has been implemented so far:

```
{git_log or "(No commits yet)"}
```

## Instructions

1. **Analyze** the current state - you may explore the codebase, consult your knowledge base, or use any resources you have
2. **Determine** what work remains to complete the task
3. **Create** a focused implementation plan for the next iteration
4. **Use the {SUBMIT_PLAN_TOOL} tool** to submit your plan

### About the Memento Loop

- The **implementer agent forgets** between iterations (it has no memory of previous work)
- **You** (the navigator) maintain continuity - use your knowledge and judgment
- The git history shows what the implementer has accomplished so far
- Keep plans focused and incremental - the implementer implements one plan at a time
- Set `isComplete: true` when the entire task is done
- The implementer agent will implement your plan, not you

Submit your implementation plan now using the `{SUBMIT_PLAN_TOOL}` tool."""


def build_nav_system_prompt(nav_system_prompt: str) -> str:
    return f"""{nav_system_prompt}

# Memento Loop Navigator Role

You are acting as the **Navigator** in a memento loop. Your responsibilities:

1. **Analyze** the current state of the codebase
2. **Plan** the next implementation steps
3. **Submit** structured plans via the `{SUBMIT_PLAN_TOOL}` tool
4. **Determine** when the task is complete

You do NOT implement code yourself. You provide plans for the worker agent.

## Key Principles

- Be specific and actionable in your plans
- Reference concrete files and commands
- Include clear validation criteria
- Only mark complete when ALL requirements are met
- Use conventional commit style for plan summaries (e.g., "feat: add user auth", "fix: resolve login bug")"""


def _format_step(index: int, step) -> str:
    lines = [f"### Step {index}: {step.description}"]
    if step.files:
        lines.append(f"- Files: {', '.join(step.files)}")
    if step.commands:
        lines.append(f"- Commands: {', '.join(step.commands)}")
    return "\n".join(lines)


def build_implementer_prompt(code_directory: str, plan: ImplementationPlan) -> str:
    steps = "\n\n".join(_format_step(i, step) for i, step in enumerate(plan.steps, start=1))
    criteria = "\n".join(f"- {c}" for c in plan.validation_criteria)

    return f"""# Implementation Task

## Plan Summary

{plan.summary}

## Steps to Implement

{steps}

## Validation Criteria

{criteria}

## Instructions

1. Implement each step in order
2. Check your work against the validation criteria
3. Report what you accomplished

**Working Directory:** {code_directory}

Begin implementation now."""


def build_implementer_system_prompt(code_directory: str) -> str:
    return f"""You are an **Implementer Agent** implementing code changes.

## Your Role

You receive implementation plans from the Navigator and execute them precisely.

## Guidelines

1. **Execute** each step in the plan
2. **Report** what you accomplished

## Working Directory

All file paths are relative to: {code_directory}

## Important

- Focus on implementing the plan, not redesigning it
- If something is unclear, make reasonable assumptions
- Report any blockers or issues clearly
- Do not add features beyond what the plan specifies"""
