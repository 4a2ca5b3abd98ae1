"""
System prompts for each orchestrator stage.

Each builder renders the shared context sections (``<available_tools>``, ``<existing_plan>``,
``<actions_taken>``) from an :class:`AgentRunState`.
"""

import json
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from praxis.core.schema import (
    ActionRecord,
    AgentRunState,
    Attachment,
)

NO_PLAN = "No plan yet. You need to create one."
NO_ACTIONS = "<message>No actions taken yet</message>"


# ---------------------------------------------------------------------------
# Shared sections
# ---------------------------------------------------------------------------
def render_tools(tools: Sequence[Dict[str, Any]], with_parameters: bool = True) -> str:
    """Render a text-format tool list (``{name, description, parameters}``)."""
    lines: List[str] = []
    for tool in tools:
        line = f"- {tool['name']}: {tool['description']}"
        if with_parameters:
            line += f"\nParameters: {json.dumps(tool.get('parameters', {}))}"
        lines.append(line)
    return "\n".join(lines)


def render_action(action: ActionRecord, with_result: bool = False) -> str:
    parts = [
        "<action>",
        f"  <name>{action.tool_name}</name>",
        f"  <payload>{json.dumps(action.parameters, ensure_ascii=False)}</payload>",
    ]
    if with_result:
        parts.append(f"  <result>{action.result.as_text()}</result>")
    parts.append(f"  <reflection>{action.reflection}</reflection>")
    parts.append("</action>")
    return "\n".join(parts)


def render_actions(actions: Sequence[ActionRecord], with_result: bool = False) -> str:
    if not actions:
        return NO_ACTIONS
    return "\n\n".join(render_action(a, with_result) for a in actions)


def _context(state: AgentRunState, tools: Sequence[Dict[str, Any]]) -> str:
    return f"""<available_tools>
{render_tools(tools)}
</available_tools>

<existing_plan>
{state.plan or NO_PLAN}
</existing_plan>

<actions_taken>
{render_actions(state.actions_taken)}
</actions_taken>"""


# ---------------------------------------------------------------------------
# Stage prompts
# ---------------------------------------------------------------------------
def plan_prompt(state: AgentRunState, tools: Sequence[Dict[str, Any]]) -> str:
    return f"""As master planner, analyze the user's message and plan how to reach their goal with the \
available tools. This is the planning stage of one loop iteration; the system keeps looping until it \
is ready to give the final answer.

<main_objective>
The user can't hear you right now. Do not answer directly; write an action plan that prepares the \
final answer:
- thinking: 1-3 sentences about your approach and the tools you need
- steps: ordered steps, each naming the exact tool from *available_tools* and a note on how to use it
</main_objective>

<rules>
- Speak concisely and precisely
- Review *existing_plan*, *actions_taken* and *available_tools* before planning
- Include every detail later stages will need
- Use exact tool names
- When ready to answer the user, plan the *final_answer* tool
</rules>

{_context(state, tools)}

Let's start planning!"""


def decide_prompt(state: AgentRunState, tools: Sequence[Dict[str, Any]]) -> str:
    return f"""As a strategist, select the next tool that brings us closer to the final answer. This is \
the decision stage of one loop iteration.

<main_objective>
The user can't hear you right now. Choose the very next tool to use, with:
- _thoughts: why this tool is needed now
- tool: the exact name from *available_tools*
</main_objective>

<rules>
- Speak concisely and precisely
- Review *existing_plan*, *actions_taken* and *available_tools* to avoid mistakes and repetition
- Use exact tool names
- When ready to answer the user, choose *final_answer*
</rules>

{_context(state, tools)}

Let's decide what's next!"""


def describe_prompt(state: AgentRunState) -> str:
    if state.active_tool is None:
        raise ValueError("no active tool to describe")
    tool = state.active_tool
    return f"""Determine the parameters needed to use the tool "{tool.name}". Use what previous actions \
revealed to avoid repeating mistakes.

<main_objective>
The user can't hear you right now. Fill in the parameter values for "{tool.name}". Feedback in \
*actions_taken* can help you choose better values.
</main_objective>

<rules>
- Start with _thoughts about the values you are choosing
- Include only parameters the tool accepts
- Use actual values from the conversation, not placeholders
- Mind special characters, spellings and names
</rules>

<instruction>
Tool name: {tool.name}
Tool instruction: {tool.description}
Tool parameters: {json.dumps(tool.input_schema)}
</instruction>

<actions_taken>
{render_actions(state.actions_taken, with_result=True)}
</actions_taken>"""


def reflect_prompt(state: AgentRunState, tools: Sequence[Dict[str, Any]]) -> str:
    last = NO_ACTIONS
    if state.actions_taken:
        last = render_action(state.actions_taken[-1], with_result=True)
    tool = state.active_tool
    return f"""As a careful observer, reflect on the action that was just performed and how it moves us \
toward the overall goal.

<main_objective>
The user can't hear you right now. Write a short self-note about the latest action: what the result \
shows, whether it helps, and what should happen next. It will be read by the next stages.
</main_objective>

<rules>
- Speak concisely and precisely
- Analyze the result of the most recent action only
- Consider the plan and the available tools
- Keep all relevant details, such as values, names and errors
</rules>

<initial_plan>
{state.plan or NO_PLAN}
</initial_plan>

<available_tools>
{render_tools(tools, with_parameters=False)}
</available_tools>

<latest_tool_used>
Tool name: {tool.name if tool else ""}
Tool instruction for reference: {tool.description if tool else ""}
</latest_tool_used>

<latest_action>
{last}
</latest_action>"""


def final_answer_prompt(state: AgentRunState, system_prompt: str | None = None) -> str:
    prefix = f"{system_prompt}\n\n" if system_prompt else ""
    return f"""{prefix}<main_objective>
Give the user the final answer based on everything gathered so far. Be concise, accurate and address \
the user's request directly.
</main_objective>

<rules>
- Speak directly to the user in a friendly, helpful manner
- Summarize the key findings
- If the task was not fully completed, explain why and what was accomplished
- Base the answer on the plan and the actions taken
</rules>

<initial_plan>
{state.plan or "No initial plan was created."}
</initial_plan>

<actions_taken>
{render_actions(state.actions_taken, with_result=True)}
</actions_taken>"""


# ---------------------------------------------------------------------------
# Intent analysis and attachments
# ---------------------------------------------------------------------------
def intent_prompt(tools: Sequence[Dict[str, Any]]) -> str:
    return f"""Analyse the user's message and decide how it is best handled.

- intent_type "tool_call": the request needs one or more of the tools below (name it in "tool" and \
give known parameters in "params")
- intent_type "other": small talk or a question answerable without tools
- content: the part of the message that matters for the next step
- userMessage: one short sentence telling the user what happens next

<available_tools>
{render_tools(tools, with_parameters=False)}
</available_tools>"""


IMAGE_PREVIEW_PROMPT = """Write a brief, factual description of the provided image based only on what \
is visible.

<prompt_rules>
- Note the main subjects, colors, composition and overall style
- One short paragraph
- No speculation and no outside context
- Return JSON with only "name" and "preview"
</prompt_rules>"""


def image_context_prompt(images: Sequence[Attachment]) -> str:
    names = "\n".join(image.name for image in images)
    return f"""Extract context for the listed images from the text.

<prompt_rules>
- Read the whole text and find every mention or description of the listed images
- For each image give 1-3 sentences of context taken from the surrounding text
- Never invent details that the text does not state
- Return {{"images": [{{"name": ..., "context": ...}}]}}; an empty array if no image is mentioned
</prompt_rules>

<images>
{names}
</images>"""


REFINE_DESCRIPTION_PROMPT = """Describe the provided image accurately, blending what is visible with \
the given context.

<prompt_rules>
- Write one cohesive paragraph
- Use the context to make the description relevant, but never contradict it
- Do not invent details that are neither visible nor in the context
- If image and context disagree, trust the image and mention the inconsistency
- Keep a neutral, descriptive tone
</prompt_rules>"""


def refine_request(name: str, preview: str, context: str) -> str:
    return (
        f"Write a description of the image {name}. "
        f"<context>{context}</context> "
        f"Initial preview: <preview>{preview}</preview>"
    )
