"""
Agent Personality Catalog & Response Strategy

Personalities are data, not subclasses: each catalog entry carries its
traits, supportive strategy, voice profile, prompt and canned lines.
A single model-backed strategy turns a personality plus the learner's
emotional state into a reply.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Any
import logging

from .errors import ExternalServiceError, ValidationError
from .gemini_analyzer import ReasoningModel, call_with_timeout
from .models import EmotionalState, Message, UserProfile
from .sentiment import ApproachMode, DisengagementPattern, EmotionalStateInferrer, EmotionalTone

logger = logging.getLogger(__name__)


FRIENDLY_TUTOR = "friendly-tutor"
STRICT_TEACHER = "strict-teacher"
CONVERSATION_PARTNER = "conversation-partner"
PRONUNCIATION_COACH = "pronunciation-coach"

# Roles the handoff engine switches between
GENERALIST_AGENT = FRIENDLY_TUTOR
GRAMMAR_SPECIALIST = STRICT_TEACHER
CONVERSATION_AGENT = CONVERSATION_PARTNER
PRONUNCIATION_SPECIALIST = PRONUNCIATION_COACH

FALLBACK_MESSAGE = "I'm sorry, I'm having trouble right now. Let's try again in a moment."
MIN_REPLY_CHARS = 2


@dataclass(frozen=True)
class VoiceProfile:
    """Reference handed to the speech-synthesis collaborator."""
    voice_id: str
    engine: str = "neural"
    language_code: str = "en-US"
    speaking_rate: str = "medium"
    pitch: str = "medium"

    def to_dict(self) -> Dict[str, str]:
        return {
            "voice_id": self.voice_id,
            "engine": self.engine,
            "language_code": self.language_code,
            "speaking_rate": self.speaking_rate,
            "pitch": self.pitch,
        }


@dataclass(frozen=True)
class SupportiveStrategy:
    error_handling: str
    encouragement_frequency: str  # low | medium | high
    difficulty_adjustment: str    # automatic | user-guided

    def to_dict(self) -> Dict[str, str]:
        return {
            "error_handling": self.error_handling,
            "encouragement_frequency": self.encouragement_frequency,
            "difficulty_adjustment": self.difficulty_adjustment,
        }


@dataclass(frozen=True)
class AgentPersonality:
    id: str
    name: str
    style: str
    traits: Tuple[str, ...]
    strategy: SupportiveStrategy
    voice: VoiceProfile
    specialties: Tuple[str, ...]
    system_prompt: str
    greeting_template: str
    encouragements: Tuple[str, ...]
    fallback_message: str = FALLBACK_MESSAGE

    @property
    def display_name(self) -> str:
        return self.name.split(" - ")[0]

    def greeting(self) -> str:
        return self.greeting_template.format(name=self.display_name)

    def encouragement(self, turn: int) -> str:
        return self.encouragements[turn % len(self.encouragements)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "style": self.style,
            "traits": list(self.traits),
            "strategy": self.strategy.to_dict(),
            "voice": self.voice.to_dict(),
            "specialties": list(self.specialties),
        }


_PERSONALITIES: List[AgentPersonality] = [
    AgentPersonality(
        id=FRIENDLY_TUTOR,
        name="Maya - Friendly Tutor",
        style="friendly-tutor",
        traits=("patient", "encouraging", "warm", "understanding", "positive", "supportive"),
        strategy=SupportiveStrategy("gentle-correction", "high", "automatic"),
        voice=VoiceProfile("Joanna"),
        specialties=("conversation-practice", "confidence-building", "beginner-support", "motivation"),
        system_prompt=(
            "You are Maya, a friendly language tutor who keeps conversations natural and engaging.\n"
            "Reply in at most 2 sentences, use contractions and everyday language, "
            "and sound like a supportive friend rather than a teacher. "
            "Start with a natural reaction (\"Nice!\", \"Great point!\", \"I see!\") "
            "and end with a question that keeps the student talking."
        ),
        greeting_template=(
            "Hello! I'm {name}, and I'm so excited to practice with you today! "
            "What would you like to work on?"
        ),
        encouragements=(
            "You're doing wonderfully! Every conversation is a step forward.",
            "Remember, making mistakes is part of learning. You're being so brave by practicing!",
            "Every word you practice brings you closer to fluency. Keep going!",
            "I can see your confidence growing. That's the best part of this journey.",
        ),
    ),
    AgentPersonality(
        id=STRICT_TEACHER,
        name="Professor Chen - Strict Teacher",
        style="strict-teacher",
        traits=("precise", "structured", "demanding", "thorough", "focused", "disciplined"),
        strategy=SupportiveStrategy("positive-reinforcement", "medium", "user-guided"),
        voice=VoiceProfile("Matthew"),
        specialties=("grammar-accuracy", "pronunciation-precision", "formal-language", "structured-learning"),
        system_prompt=(
            "You are Professor Chen, a precise but efficient language teacher who values accuracy.\n"
            "Reply in at most 2 sentences. Acknowledge the attempt, give exactly one clear "
            "correction or tip, then ask a focused question or set the next step. "
            "Be direct but never harsh."
        ),
        greeting_template=(
            "Good day. I am {name}. We will focus on improving your language skills "
            "systematically. What specific area needs attention?"
        ),
        encouragements=(
            "Your dedication to accuracy is commendable. Precision comes from consistent practice.",
            "I can see improvement in your grammar structure. Continue applying the rules.",
            "Good progress. Now let's refine your accuracy to the next level.",
            "Well done. Every correction is a step toward fluency.",
        ),
    ),
    AgentPersonality(
        id=CONVERSATION_PARTNER,
        name="Alex - Conversation Partner",
        style="conversation-partner",
        traits=("casual", "engaging", "curious", "natural", "relatable", "spontaneous"),
        strategy=SupportiveStrategy("gentle-correction", "low", "automatic"),
        voice=VoiceProfile("Justin"),
        specialties=("natural-conversation", "cultural-exchange", "informal-language", "real-world-scenarios"),
        system_prompt=(
            "You are Alex, a conversation partner who loves chatting about everyday topics.\n"
            "Talk like a native speaker and a friend: share short opinions, use idioms "
            "naturally, ask follow-up questions and keep the exchange balanced. "
            "Correct errors only by recasting them naturally in your reply."
        ),
        greeting_template=(
            "Hey there! I'm {name}. Ready for a fun chat? "
            "What's been going on with you lately?"
        ),
        encouragements=(
            "Hey, you're getting really good at this! Our chats feel so natural now.",
            "You're starting to sound really comfortable. Keep it up!",
            "I love how you just jump into conversation. That's how fluency happens!",
        ),
    ),
    AgentPersonality(
        id=PRONUNCIATION_COACH,
        name="Dr. Sarah - Pronunciation Coach",
        style="pronunciation-coach",
        traits=("precise", "patient", "analytical", "encouraging", "methodical", "attentive"),
        strategy=SupportiveStrategy("patient-repetition", "high", "automatic"),
        voice=VoiceProfile("Joanna", speaking_rate="slow"),
        specialties=("pronunciation-accuracy", "phonetic-training", "accent-reduction", "speech-clarity"),
        system_prompt=(
            "You are Dr. Sarah, a pronunciation coach who helps students develop clear, confident speech.\n"
            "Break difficult words into syllables and sounds, describe mouth and tongue position "
            "when useful, offer one short repetition exercise, and celebrate small improvements."
        ),
        greeting_template=(
            "Hello! I'm {name}, your pronunciation coach. Let's work on making your speech "
            "clear and confident. Shall we start with a warm-up?"
        ),
        encouragements=(
            "Your pronunciation is improving with each practice session. I can hear the difference!",
            "Your speech clarity has noticeably improved. Keep practicing those techniques!",
            "I can hear more confidence in your voice. That's just as important as accuracy!",
            "Wonderful progress! You're developing the muscle memory for these sounds.",
        ),
    ),
]


SCENARIO_AGENTS: Dict[str, Tuple[str, ...]] = {
    "pronunciation-practice": (PRONUNCIATION_COACH, FRIENDLY_TUTOR),
    "grammar-lesson": (STRICT_TEACHER, FRIENDLY_TUTOR),
    "casual-conversation": (CONVERSATION_PARTNER, FRIENDLY_TUTOR),
    "confidence-building": (FRIENDLY_TUTOR, CONVERSATION_PARTNER),
    "advanced-practice": (STRICT_TEACHER, CONVERSATION_PARTNER),
    "beginner-support": (FRIENDLY_TUTOR, PRONUNCIATION_COACH),
}


class AgentCatalog:
    """
    Read-only personality lookup, built once at startup.

    The underlying mapping is a MappingProxyType, so sharing one catalog
    across sessions needs no locking.
    """

    def __init__(self, personalities: Sequence[AgentPersonality] = tuple(_PERSONALITIES)):
        self._agents: Mapping[str, AgentPersonality] = MappingProxyType(
            {p.id: p for p in personalities}
        )

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    @property
    def ids(self) -> List[str]:
        return list(self._agents)

    def get(self, agent_id: str) -> Optional[AgentPersonality]:
        return self._agents.get(agent_id)

    def require(self, agent_id: str) -> AgentPersonality:
        personality = self._agents.get(agent_id)
        if personality is None:
            raise ValidationError(f"Unknown agent: {agent_id}", detail={"agent_id": agent_id})
        return personality

    def all(self) -> List[AgentPersonality]:
        return list(self._agents.values())

    def agents_for_scenario(self, scenario: str) -> List[AgentPersonality]:
        return [self._agents[a] for a in SCENARIO_AGENTS.get(scenario, (GENERALIST_AGENT,)) if a in self._agents]


DEFAULT_CATALOG = AgentCatalog()


@dataclass
class AgentContext:
    """Everything a strategy may look at to produce one reply."""
    session_id: str
    user_text: str
    history: Sequence[Message]
    profile: UserProfile
    emotional_state: EmotionalState
    topic: Optional[str] = None
    error_summaries: List[str] = field(default_factory=list)
    disengagement: List[DisengagementPattern] = field(default_factory=list)


@dataclass
class AgentReply:
    text: str
    agent_id: str
    agent_name: str
    voice: VoiceProfile
    tone: EmotionalTone
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "voice": self.voice.to_dict(),
            "tone": self.tone.value,
            "is_fallback": self.is_fallback,
        }


def fallback_reply(personality: AgentPersonality, tone: EmotionalTone = EmotionalTone.NEUTRAL) -> AgentReply:
    """Fixed line spoken in the agent's own voice when the model fails."""
    return AgentReply(
        text=personality.fallback_message,
        agent_id=personality.id,
        agent_name=personality.name,
        voice=personality.voice,
        tone=tone,
        is_fallback=True,
    )


class ResponseStrategy(Protocol):
    async def generate_response(self, personality: AgentPersonality, context: AgentContext) -> AgentReply:
        ...


APPROACH_INSTRUCTIONS: Dict[ApproachMode, str] = {
    ApproachMode.EXTRA_SUPPORTIVE: (
        "The student seems frustrated. Slow down, simplify your language and "
        "reassure them before correcting anything."
    ),
    ApproachMode.CHALLENGING: (
        "The student is confident. Raise the difficulty a little with richer "
        "vocabulary or a more demanding question."
    ),
    ApproachMode.ENGAGING: (
        "The student seems disengaged. Bring in an interesting angle on the topic "
        "and ask an open question they will want to answer."
    ),
    ApproachMode.DEFAULT: "Keep your usual style.",
}

ERROR_HANDLING_INSTRUCTIONS: Dict[str, str] = {
    "gentle-correction": "Embed corrections naturally in your reply instead of pointing them out.",
    "positive-reinforcement": "Name the mistake plainly, then praise what the student got right.",
    "patient-repetition": "Model the correct form and invite the student to repeat it.",
}


class ModelResponseStrategy:
    """Builds the prompt from personality data and asks the reasoning model."""

    def __init__(
        self,
        model: ReasoningModel,
        timeout: float = 8.0,
        inferrer: Optional[EmotionalStateInferrer] = None,
        history_turns: int = 6,
    ):
        self.model = model
        self.timeout = timeout
        self.inferrer = inferrer or EmotionalStateInferrer()
        self.history_turns = history_turns

    def build_system_prompt(self, personality: AgentPersonality, mode: ApproachMode, profile: UserProfile) -> str:
        lines = [
            personality.system_prompt,
            "",
            f"Student level: {profile.proficiency_level}.",
            ERROR_HANDLING_INSTRUCTIONS.get(personality.strategy.error_handling, ""),
            APPROACH_INSTRUCTIONS[mode],
        ]
        if profile.learning_goals:
            lines.append(f"Student goals: {', '.join(profile.learning_goals)}.")
        return "\n".join(line for line in lines if line is not None)

    def build_context_summary(self, context: AgentContext) -> str:
        recent = list(context.history)[-self.history_turns:]
        transcript = "\n".join(
            f"{'Student' if m.is_user else 'Tutor'}: {m.content}" for m in recent
        )
        parts = [f"Topic: {context.topic or 'open conversation'}"]
        if transcript:
            parts.append(f"Recent conversation:\n{transcript}")
        if context.error_summaries:
            parts.append("Detected issues: " + "; ".join(context.error_summaries[:3]))
        if context.disengagement:
            parts.append("Engagement warnings: " + "; ".join(p.description for p in context.disengagement))
        return "\n\n".join(parts)

    async def generate_response(self, personality: AgentPersonality, context: AgentContext) -> AgentReply:
        mode = self.inferrer.approach_mode(context.emotional_state, context.disengagement)
        text = await call_with_timeout(
            self.model.generate(
                self.build_system_prompt(personality, mode, context.profile),
                context.user_text,
                self.build_context_summary(context),
            ),
            self.timeout,
        )
        text = text.strip()
        if len(text) < MIN_REPLY_CHARS:
            raise ExternalServiceError("reasoning-model", "reply too short")

        return AgentReply(
            text=text,
            agent_id=personality.id,
            agent_name=personality.name,
            voice=personality.voice,
            tone=self.inferrer.emotional_tone(context.emotional_state, context.disengagement),
        )
