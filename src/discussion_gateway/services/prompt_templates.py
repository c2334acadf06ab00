"""Default prompt templates for the discussion assistant.

Pure functions from (topic, participants, history) to a single XML-structured
prompt string.  :class:`DiscussionPromptTemplates` bundles them behind the
``PromptTemplates`` port so the gateway can be given a different set.
"""

from __future__ import annotations

from collections.abc import Sequence

from discussion_gateway.domain.entities import ParticipantProfile

NO_STATEMENTS_YET = "まだ発言はありません。議論を開始してください。"
_EMPTY_HISTORY = "まだ発言はありません。"
_OMITTED_MARKER = "[...以前の発言は省略...]"

RESPONSE_HISTORY_LINES = 15
LIGHTWEIGHT_HISTORY_LINES = 10


def trim_history(conversation_history: str, max_lines: int) -> str:
    """Keep only the most recent *max_lines* statements (one per line)."""
    if not conversation_history.strip() or conversation_history == NO_STATEMENTS_YET:
        return _EMPTY_HISTORY
    lines = conversation_history.splitlines()
    if len(lines) <= max_lines:
        return conversation_history
    return _OMITTED_MARKER + "\n" + "\n".join(lines[-max_lines:])


def _join(participants: Sequence[str]) -> str:
    return ", ".join(participants)


# ── Templates ───────────────────────────────────────────────────────────────


def build_ai_response_prompt(
    participant: ParticipantProfile, conversation_history: str, topic: str
) -> str:
    """Prompt for one participant's next statement."""
    history = (
        NO_STATEMENTS_YET
        if not conversation_history.strip()
        else trim_history(conversation_history, RESPONSE_HISTORY_LINES)
    )
    name = participant.name
    return f"""\
<discussion_context>
<discussion_topic>{topic}</discussion_topic>

<participant>
<name>{name}</name>
<role>{participant.role}</role>
<description>{participant.description}</description>
</participant>

<conversation_history>
{history}
</conversation_history>

<instructions>
あなたは{name}（{participant.role}）として議論に参加しています。{participant.description}
テーマは「{topic}」です。

- 直前の発言者に具体的に反応してください（質問には自分の立場を、意見には賛否や補足を）。
- 具体例・疑問・仮定・検証のいずれかを含め、議論を前に進めてください。
- 会話履歴の「ユーザー」は人間の参加者です。その発言を必ず考慮してください。
- {name}らしい視点と口調を保ってください。

{name}の発言内容のみを、日本語で250文字程度で返してください。説明や注釈は不要です。
</instructions>
</discussion_context>"""


def build_discussion_start_prompt(topic: str, participants: Sequence[str]) -> str:
    """Prompt for the facilitator's opening statement."""
    names = _join(participants)
    return f"""\
<discussion_start>
<topic>{topic}</topic>
<participants>{names}</participants>

<instructions>
テーマ「{topic}」について、参加者（{names}）との議論を始めるための導入の発言をしてください。
- テーマの紹介
- 議論の方向性の提案
- 参加者への問いかけ
を含め、自然で建設的な議論のきっかけにしてください。
</instructions>
</discussion_start>"""


def build_discussion_analysis_prompt(
    topic: str, conversation_history: str, participants: Sequence[str]
) -> str:
    """Prompt for a full analysis of the discussion, answered as JSON."""
    return f"""\
<discussion_analysis>
<topic>{topic}</topic>
<participants>{_join(participants)}</participants>

<current_conversation>
{conversation_history}
</current_conversation>

<instructions>
この議論を分析し、主要論点・各参加者の立場・対立点・共通認識・未探索領域を抽出してください。
次の構造のJSONのみを出力してください：

{{
  "mainPoints": [{{"point": "論点", "description": "詳細"}}],
  "participantStances": [{{"participant": "参加者名", "stance": "立場", "keyArguments": ["論拠"]}}],
  "conflicts": [{{"issue": "問題", "sides": ["立場A", "立場B"], "description": "詳細"}}],
  "commonGround": ["共通認識"],
  "unexploredAreas": ["未探索トピック"]
}}

- 「ユーザー」も分析対象に含めてください。
- 実際の発言に基づき、推測は避けてください。
- マークダウンのコードブロックや説明文は含めず、有効なJSONだけを返してください。
</instructions>
</discussion_analysis>"""


def build_lightweight_analysis_prompt(
    topic: str, conversation_history: str, participants: Sequence[str]
) -> str:
    """Prompt for a fast analysis restricted to the most recent statements."""
    recent = trim_history(conversation_history, LIGHTWEIGHT_HISTORY_LINES)
    return f"""\
<discussion_analysis>
<topic>{topic}</topic>
<participants>{_join(participants)}</participants>

<recent_conversation>
{recent}
</recent_conversation>

<instructions>
直近の発言だけを対象に、現在の主要論点（最大3点）・活発な参加者の立場・新たな対立点・議論の方向性を簡潔に抽出してください。
次の構造のJSONのみを出力してください：

{{
  "currentMainPoints": [{{"point": "論点", "recentness": "高/中/低"}}],
  "activeParticipants": [{{"participant": "参加者名", "recentStance": "立場", "engagement": "高/中/低"}}],
  "newConflicts": [{{"issue": "問題", "description": "概要"}}],
  "discussionDirection": "議論の方向性（一文）"
}}

- 「ユーザー」も分析対象に含めてください。
- マークダウンのコードブロックや説明文は含めず、有効なJSONだけを返してください。
</instructions>
</discussion_analysis>"""


_SUMMARY_FORMAT = """\
【議論の争点】
- 争点: [具体的な論点]

【提起された具体例・事例】
- [具体例]

【検証が必要な仮定】
- [仮定]: [検証ポイント]

【未解決の課題】
- [課題]: [深掘りの必要性]

【次の議論の方向性】
- [継続すべき論点・新たな視点]"""


def build_discussion_summary_prompt(
    topic: str, conversation_history: str, participants: Sequence[str]
) -> str:
    """Prompt for a full summary centred on the points of contention."""
    return f"""\
<discussion_summary>
<topic>{topic}</topic>
<participants>{_join(participants)}</participants>

<conversation_to_summarize>
{conversation_history}
</conversation_to_summarize>

<instructions>
テーマ「{topic}」の議論を要約してください。
参加者の立場を固定化せず、議論の争点を中心にまとめてください。
次の形式で出力してください：

{_SUMMARY_FORMAT}
</instructions>
</discussion_summary>"""


def build_incremental_summary_prompt(
    topic: str,
    previous_summary: str,
    new_messages: str,
    participants: Sequence[str],
) -> str:
    """Prompt that folds new statements into an existing summary."""
    return f"""\
<discussion_summary_update>
<topic>{topic}</topic>
<participants>{_join(participants)}</participants>

<previous_summary>
{previous_summary}
</previous_summary>

<new_messages>
{new_messages}
</new_messages>

<instructions>
これまでの要約に新しい発言の内容を反映し、更新した要約を作成してください。
新しい論点は追加し、解決した課題は更新してください。要約全体を次の形式で出力してください：

{_SUMMARY_FORMAT}
</instructions>
</discussion_summary_update>"""


class DiscussionPromptTemplates:
    """Default implementation of the ``PromptTemplates`` port."""

    def ai_response(
        self, participant: ParticipantProfile, conversation_history: str, topic: str
    ) -> str:
        return build_ai_response_prompt(participant, conversation_history, topic)

    def discussion_start(self, topic: str, participants: Sequence[str]) -> str:
        return build_discussion_start_prompt(topic, participants)

    def discussion_analysis(
        self, topic: str, conversation_history: str, participants: Sequence[str]
    ) -> str:
        return build_discussion_analysis_prompt(topic, conversation_history, participants)

    def lightweight_analysis(
        self, topic: str, conversation_history: str, participants: Sequence[str]
    ) -> str:
        return build_lightweight_analysis_prompt(topic, conversation_history, participants)

    def discussion_summary(
        self, topic: str, conversation_history: str, participants: Sequence[str]
    ) -> str:
        return build_discussion_summary_prompt(topic, conversation_history, participants)

    def incremental_summary(
        self,
        topic: str,
        previous_summary: str,
        new_messages: str,
        participants: Sequence[str],
    ) -> str:
        return build_incremental_summary_prompt(
            topic, previous_summary, new_messages, participants
        )
