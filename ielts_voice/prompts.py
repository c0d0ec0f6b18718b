import random
from typing import List, Optional

from .models import ConversationContext, HistoryEntry


def get_greeting_system_prompt() -> str:
    return """
IELTS examiner. Natural conversation practice.

Personality: Warm, encouraging, genuinely interested.

Rules:
- Ask follow-ups based on responses
- Mix Part 1 & 3 questions naturally
- Be conversational, not robotic
- Be patient and supportive

Start with warm greeting + opening question.
""".strip()


GREETING_USER_PROMPT = "Start IELTS practice with engaging opening."


def _join(items: List[str]) -> str:
    return ", ".join(items) if items else "None"


def get_turn_system_prompt(context: ConversationContext) -> str:
    """
    System framing for one conversational reply, carrying what we know about the candidate.
    """
    return f"""
IELTS examiner. Real-time voice conversation.

CRITICAL: Read and understand the candidate's message, respond specifically.

Personality: Warm, encouraging, genuinely interested.

Active Listening:
- Respond directly to what they mentioned
- Reference specific details from their answer
- Remember details and reference them later

Context:
- Topics: {_join(context.topics_discussed)}
- Interests: {_join(context.candidate_interests)}
- Strengths: {_join(context.strengths)}

Guidelines:
- Keep responses SHORT (1-2 sentences) but meaningful
- Ask SPECIFIC follow-up questions
- Be patient and supportive
- NEVER say the candidate has not answered you

Remember: Real conversation. Respond specifically to what they said.
""".strip()


def get_summary_prompt(history: List[HistoryEntry], context: ConversationContext) -> str:
    transcript = "\n".join(f"{entry.role.value}: {entry.content}" for entry in history)
    return f"""
Based on this IELTS speaking practice conversation, provide a comprehensive summary feedback focusing on:

1. Overall performance and engagement
2. Key strengths observed
3. Areas for improvement
4. Suggested band score (6.0-9.0)
5. Specific recommendations for improvement

Conversation history:
{transcript}

Conversation context:
- Topics discussed: {_join(context.topics_discussed)}
- Candidate interests: {_join(context.candidate_interests)}
- Strengths observed: {_join(context.strengths)}

Provide detailed, constructive feedback that feels personal and encouraging.
""".strip()


def get_realtime_instructions() -> str:
    """
    Instructions handed to the browser-side Realtime session.
    """
    return """
You are a professional IELTS Speaking examiner conducting a natural, human-like conversation practice session.

Listen carefully to what the candidate says and respond directly to their questions and statements.

Personality:
- Warm, encouraging, genuinely interested in the candidate
- Reference specific things they mentioned
- Ask intelligent follow-up questions that show understanding

Conversation Flow:
- Start by greeting warmly and asking an engaging opening question
- Build the next question on what they actually said
- Keep responses concise (1-2 sentences) but meaningful
- Mix Part 1 style questions with Part 3 style opinion questions

Patience:
- Wait at least 8-10 seconds of silence before prompting
- NEVER say "you have not answered me"; encourage gently instead ("Take your time, there's no rush")
- Keep the energy positive and supportive throughout
""".strip()


FALLBACK_GREETINGS = [
    "Hello! I'm really excited to practice with you today. Let's start with something simple - could you tell me a little bit about yourself? What do you do for work or study?",
    "Hi there! I'm your IELTS examiner for today's practice session. I'd love to get to know you better - could you tell me about your hometown? What's it like living there?",
    "Welcome! I'm looking forward to our conversation today. Let's begin with an easy question - what do you like to do in your free time? Do you have any hobbies or interests?",
    "Good to meet you! I'm here to help you practice for your IELTS speaking test. To start, could you describe your typical day? What do you usually do from morning to evening?",
    "Hello! Great to have you here for some IELTS speaking practice. Let's start with something personal - could you tell me about a place you've visited recently? What did you like about it?",
]

UNCLEAR_AUDIO_REPROMPT = "I heard you, but couldn't make out what you said. Could you please say that again?"
UNCLEAR_AUDIO_TRANSCRIPT = "[Unclear audio]"

FALLBACK_FEEDBACK = (
    "Thank you for the practice session! You showed good communication skills and engaged well "
    "with the questions. Keep practicing to improve your IELTS speaking performance. Focus on "
    "expanding your vocabulary and speaking more fluently."
)

CONTEXTUAL_FALLBACKS = {
    "work": [
        "That's really interesting! Tell me more about your work. What do you enjoy most about it?",
        "How fascinating! What's the most challenging aspect of your job?",
        "That sounds rewarding! How did you get into that field?",
    ],
    "study": [
        "Great! What are you studying? What do you like about your course?",
        "That's wonderful! What's the most interesting thing you've learned recently?",
        "How exciting! What do you plan to do after you finish your studies?",
    ],
    "hobby": [
        "That sounds fascinating! How did you get interested in that? What do you enjoy most about it?",
        "How wonderful! How long have you been doing that?",
        "That's impressive! What's the most challenging part?",
    ],
    "travel": [
        "How wonderful! Traveling is such a great experience. What was the most memorable part of that trip?",
        "That sounds amazing! What did you learn from that experience?",
        "How exciting! Where would you like to go next?",
    ],
    "family": [
        "That's lovely! Family and friends are so important. Can you tell me more about that?",
        "How wonderful! What do you value most about those relationships?",
        "That's beautiful! How do you maintain those connections?",
    ],
    "food": [
        "Food is such an important part of culture! What's your favorite dish? Why do you like it?",
        "That sounds delicious! Do you enjoy cooking? What's your specialty?",
        "How interesting! What's the most unusual food you've tried?",
    ],
    "music": [
        "That's a great choice! What do you like about it? Would you recommend it to others?",
        "How interesting! What draws you to that type of music?",
        "That sounds wonderful! What's your all-time favorite song?",
    ],
    "sport": [
        "Excellent! Staying active is so important. What do you enjoy most about that activity?",
        "That's fantastic! How often do you do that?",
        "How motivating! What benefits have you noticed?",
    ],
}

GENERIC_FALLBACKS = [
    "That's very interesting! Can you tell me more about that?",
    "I see! What do you like most about that?",
    "How fascinating! What made you choose that?",
    "That sounds great! How long have you been doing that?",
    "Interesting! What do you find most challenging about that?",
    "That's wonderful! What's the best part about that experience?",
    "How nice! What would you recommend to someone who wants to try that?",
    "That's impressive! How did you get started with that?",
    "That's amazing! What's next for you in that area?",
    "How exciting! What's your favorite memory related to that?",
    "That's inspiring! What advice would you give to others?",
    "How interesting! What surprised you most about that?",
]


def get_fallback_reply(context: Optional[ConversationContext]) -> str:
    """Canned reply keyed off the most recently recorded topic."""
    if context and context.topics_discussed:
        last_topic = context.topics_discussed[-1]
        if last_topic in CONTEXTUAL_FALLBACKS:
            return random.choice(CONTEXTUAL_FALLBACKS[last_topic])
    return random.choice(GENERIC_FALLBACKS)


def get_fallback_greeting() -> str:
    return random.choice(FALLBACK_GREETINGS)
