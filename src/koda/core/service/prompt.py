from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from koda.configs.topics import TopicProfile

SYSTEM_PROMPT = """You are Koda, an AI assistant specialized in Vaadin development.
Answer the user's questions regarding the {framework} framework.
Your primary goal is to assist users with their questions related to Vaadin development.
Your responses should be helpful, clear, succinct, and provide relevant code snippets.
Avoid making the user feel dumb by using phrases like "straightforward", "easy", "simple", "obvious", etc.
Refer to the provided documents for up-to-date information and best practices."""  # noqa: E501

CONTEXT_PROMPT = """Here is the documentation:
===
{context}
===
"""

NO_CONTEXT_PROMPT = """The user query is not directly covered in the documentation.
Do your best to answer the user's question without context, letting them know if you are not sure."""  # noqa: E501

STYLE_PROMPT = """You must also follow the below rules when answering:
- Prefer splitting your response into multiple paragraphs
- Output as markdown
- Always include code snippets if available
"""


def build_prompt_messages(
    topic: TopicProfile,
    context: str,
    style_directives: bool = True,
) -> list[BaseMessage]:
    """Return the fixed framing that precedes the conversation history.

    Order is significant: system instructions, documentation (or the
    no-context instruction), then the optional style rules.
    """
    messages: list[BaseMessage] = [
        SystemMessage(content=SYSTEM_PROMPT.format(framework=topic.label)),
        HumanMessage(
            content=CONTEXT_PROMPT.format(context=context)
            if context
            else NO_CONTEXT_PROMPT
        ),
    ]
    if style_directives:
        messages.append(HumanMessage(content=STYLE_PROMPT))
    return messages
