##########################################################################################
#
# Script name: config.py
#
# Description: Static configuration and topic taxonomy for the daily opinion radar.
#
##########################################################################################

from dataclasses import dataclass


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************


@dataclass(frozen=True)
class TopicSlot:
    code: str
    domain: str
    core_question: str
    stance_labels: tuple[str, str]

    @property
    def yes_label(self) -> str:
        return self.stance_labels[0]

    @property
    def no_label(self) -> str:
        return self.stance_labels[1]


DOMAINS = {
    'T': 'Technology',
    'P': 'Politics',
    'H': 'History',
    'Φ': 'Philosophy',
    'R': 'Religion',
    'F': 'Finance',
}

TOPIC_SLOTS = [
    TopicSlot('T1', 'T', 'Is AI rewriting the structure of social stratification?', ('Democratising', 'Elite-concentrating')),
    TopicSlot('T2', 'T', 'Is technology being embedded in institutions or routing around them?', ('Absorbable', 'Inherently anti-institutional')),
    TopicSlot('T3', 'T', 'Has technology escaped collective human will?', ('Still steerable', 'Competitive fate')),
    TopicSlot('P1', 'P', 'Is democracy unfit for a high-complexity society?', ('Irreplaceable', 'Technocracy is more realistic')),
    TopicSlot('P2', 'P', 'Is power slipping out of public visibility?', ('Can be pulled back', 'Post-political governance')),
    TopicSlot('P3', 'P', 'Is the liberal international order ending?', ('Adapting', 'Fragmenting')),
    TopicSlot('H1', 'H', 'Is civilisation entering a phase of regression?', ('Cyclical pullback', 'Long-term decline')),
    TopicSlot('H2', 'H', 'Are there common warning signs before social collapse?', ('Recognisable', 'Only understood afterwards')),
    TopicSlot('H3', 'H', 'Does history move in cycles or progress?', ('Cycles', 'Progress')),
    TopicSlot('Φ1', 'Φ', 'Are freedom and order inherently in conflict?', ('Order first', 'Freedom cannot be sacrificed')),
    TopicSlot('Φ2', 'Φ', 'Can meaning survive a fully explained universe?', ('Meaning endures', 'Meaning erodes')),
    TopicSlot('Φ3', 'Φ', 'Is freedom being replaced by systemic rationality?', ('Still freedom', 'Optimisation is control')),
    TopicSlot('R1', 'R', 'Is secularisation irreversible?', ('Irreversible', 'Religion returns')),
    TopicSlot('R2', 'R', 'Is technology becoming a pseudo-religion?', ('Only a tool', 'Fulfils a faith function')),
    TopicSlot('F1', 'F', 'Is the current monetary order sustainable?', ('Self-stabilising', 'Heading for a reset')),
    TopicSlot('F2', 'F', 'Is finance amplifying social division?', ('Self-correcting', 'Eroding social foundations')),
]

SLOT_BY_CODE = {slot.code: slot for slot in TOPIC_SLOTS}

# One representative slot per domain; a normal day should cover all of them.
CORE_SLOTS = ('T1', 'P1', 'H1', 'Φ1', 'R1', 'F1')

STANCES = ('yes', 'no')
LEGACY_STANCES = {'a': 'yes', 'b': 'no'}

GENERATION_MIN_LENGTH = 700
PUBLISH_MIN_LENGTH = 300
AUDIT_MIN_LENGTH = 500
LENGTH_THRESHOLDS = {
    'generation': GENERATION_MIN_LENGTH,
    'publish': PUBLISH_MIN_LENGTH,
    'audit': AUDIT_MIN_LENGTH,
}

TITLE_SIMILARITY_THRESHOLD = 0.8
MAX_CANDIDATE_AGE_DAYS = 365
CANDIDATE_QUEUE_LIMIT = 50

DEFAULT_MAX_CONSECUTIVE_FAILURES = 5
# Default synthesis budget per run is this many calls per allowed entry.
SYNTHESIS_CALLS_PER_ITEM = 2
DEFAULT_MAX_CANDIDATE_FAILURES = 2

# Hard-coded policy used when the day rules file cannot be read.
SAFE_DEFAULT_RULES = {
    'min_items': 6,
    'max_items': 8,
    'max_per_slot': 1,
    'min_duration': 40,
    'min_video_items': 1,
    'min_non_video_items': 5,
    'max_non_video_items': 7,
    'frequency_flex': False,
    'content_type_flex': False,
    'min_content_length': PUBLISH_MIN_LENGTH,
}

VIDEO_URL_PATTERNS = (
    'youtube.com/',
    'youtu.be/',
    'vimeo.com/',
    'bilibili.com/',
)

PROVENANCE_HEDGE_PATTERNS = [
    r'inferred\s+from\s+(the\s+)?metadata',
    r'based\s+on\s+(the\s+)?metadata',
    r'according\s+to\s+(the\s+)?metadata',
    r'speculative\s+reconstruction',
    r'基于.*推断',
    r'基于元数据',
    r'根据.*元数据',
    r'从.*元数据',
]

# Tracked origins: channels, publications and feeds with a priority weight (1-10).
TRACKED_ORIGINS = [
    {'name': 'Lex Fridman Podcast', 'priority': 10, 'domain': 'tech'},
    {'name': 'Dwarkesh Podcast', 'priority': 9, 'domain': 'tech'},
    {'name': 'a16z', 'priority': 8, 'domain': 'tech'},
    {'name': 'Machine Learning Street Talk', 'priority': 8, 'domain': 'tech'},
    {'name': 'Stanford HAI', 'priority': 9, 'domain': 'tech'},
    {'name': 'MIT Technology Review', 'priority': 7, 'domain': 'tech'},
    {'name': 'Foreign Affairs', 'priority': 10, 'domain': 'politics'},
    {'name': 'Council on Foreign Relations', 'priority': 9, 'domain': 'politics'},
    {'name': 'Brookings Institution', 'priority': 8, 'domain': 'politics'},
    {'name': 'CSIS', 'priority': 9, 'domain': 'politics'},
    {'name': 'Chatham House', 'priority': 8, 'domain': 'politics'},
    {'name': 'Munich Security Conference', 'priority': 8, 'domain': 'politics'},
    {'name': 'World Economic Forum', 'priority': 10, 'domain': 'politics'},
    {'name': 'Project Syndicate', 'priority': 8, 'domain': 'politics'},
    {'name': 'Long Now Foundation', 'priority': 8, 'domain': 'philosophy'},
    {'name': 'Santa Fe Institute', 'priority': 8, 'domain': 'philosophy'},
    {'name': 'Intelligence Squared', 'priority': 8, 'domain': 'philosophy'},
    {'name': 'Oxford Union', 'priority': 8, 'domain': 'philosophy'},
    {'name': 'Aeon', 'priority': 7, 'domain': 'philosophy'},
    {'name': 'Bloomberg', 'priority': 9, 'domain': 'finance'},
    {'name': 'Real Vision', 'priority': 8, 'domain': 'finance'},
    {'name': 'Bridgewater', 'priority': 9, 'domain': 'finance'},
    {'name': 'The Economist', 'priority': 8, 'domain': 'finance'},
    {'name': 'The Veritas Forum', 'priority': 8, 'domain': 'religion'},
    {'name': 'Closer To Truth', 'priority': 8, 'domain': 'religion'},
]

NOTABLE_PEOPLE = [
    {'name': 'Demis Hassabis', 'priority': 10, 'domain': 'tech'},
    {'name': 'Sam Altman', 'priority': 10, 'domain': 'tech'},
    {'name': 'Geoffrey Hinton', 'priority': 9, 'domain': 'tech'},
    {'name': 'Yann LeCun', 'priority': 9, 'domain': 'tech'},
    {'name': 'Fei-Fei Li', 'priority': 8, 'domain': 'tech'},
    {'name': 'Francis Fukuyama', 'priority': 9, 'domain': 'politics'},
    {'name': 'John Mearsheimer', 'priority': 9, 'domain': 'politics'},
    {'name': 'Anne Applebaum', 'priority': 8, 'domain': 'politics'},
    {'name': 'Daron Acemoglu', 'priority': 9, 'domain': 'politics'},
    {'name': 'David Chalmers', 'priority': 9, 'domain': 'philosophy'},
    {'name': 'Michael Sandel', 'priority': 9, 'domain': 'philosophy'},
    {'name': 'Martha Nussbaum', 'priority': 8, 'domain': 'philosophy'},
    {'name': 'Yuval Noah Harari', 'priority': 9, 'domain': 'history'},
    {'name': 'Niall Ferguson', 'priority': 8, 'domain': 'history'},
    {'name': 'Peter Turchin', 'priority': 8, 'domain': 'history'},
    {'name': 'Adam Tooze', 'priority': 8, 'domain': 'history'},
    {'name': 'Ray Dalio', 'priority': 9, 'domain': 'finance'},
    {'name': 'Howard Marks', 'priority': 8, 'domain': 'finance'},
    {'name': 'Mariana Mazzucato', 'priority': 8, 'domain': 'finance'},
    {'name': 'Charles Taylor', 'priority': 8, 'domain': 'religion'},
    {'name': 'John Gray', 'priority': 8, 'domain': 'religion'},
]

TOPIC_KEYWORDS = {
    'tech': [
        'ai',
        'artificial intelligence',
        'machine learning',
        'agi',
        'robot',
        'automation',
        'technology',
        'quantum',
        'llm',
        'superintelligence',
        'alignment',
    ],
    'politics': [
        'democracy',
        'geopolitics',
        'government',
        'policy',
        'election',
        'nato',
        'authoritarianism',
        'liberalism',
        'sovereignty',
    ],
    'philosophy': [
        'consciousness',
        'ethics',
        'morality',
        'free will',
        'meaning',
        'truth',
        'philosophy',
        'justice',
        'rationality',
    ],
    'finance': [
        'economy',
        'market',
        'investment',
        'bitcoin',
        'banking',
        'debt',
        'inflation',
        'recession',
        'capitalism',
        'inequality',
    ],
    'history': [
        'civilization',
        'civilisation',
        'empire',
        'history',
        'revolution',
        'collapse',
        'modernity',
    ],
    'religion': [
        'religion',
        'faith',
        'spiritual',
        'god',
        'belief',
        'atheism',
        'secular',
        'transcendence',
    ],
}

DURATION_BONUS_TIERS = (
    (120, 20),
    (90, 15),
    (60, 10),
)


def get_slot(code: str) -> TopicSlot | None:
    return SLOT_BY_CODE.get((code or '').strip())


def domain_of(code: str) -> str | None:
    slot = get_slot(code)
    return slot.domain if slot else None
