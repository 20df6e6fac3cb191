"""Static feature, subscription plan and token package tables.

Prices are in IDR (the gateway's settlement currency), so ``price`` is a whole
number of rupiah.
"""

from tokengate.models.account import PremiumPlan
from tokengate.schemas.catalog import FeatureConfig, SubscriptionPlan, TokenPackage

FEATURES: list[FeatureConfig] = [
    # Student development (premium)
    FeatureConfig(
        id="ikigai-self-discovery",
        name="Ikigai Self Discovery",
        category="student-development",
        description="Discover your Ikigai sweet spot for career and business",
        is_premium=True,
        token_cost=2,
    ),
    FeatureConfig(
        id="swot-self-analysis",
        name="SWOT Self-Analysis",
        category="student-development",
        description="SWOT analysis based on personality traits",
        is_premium=True,
        token_cost=2,
    ),
    FeatureConfig(
        id="essay-exchanges",
        name="Essay Exchanges",
        category="student-development",
        description="Generate exchange program essays",
        is_premium=True,
        token_cost=2,
    ),
    FeatureConfig(
        id="interview-simulation",
        name="Interview Simulation",
        category="student-development",
        description="Practice interviews with AI feedback",
        is_premium=True,
        token_cost=3,
    ),
    # Competition assistant (free tier)
    FeatureConfig(
        id="essay-idea-generator",
        name="Essay Idea Generator",
        category="asisten-lomba",
        description="Generate essay ideas for competitions",
        token_cost=1,
    ),
    FeatureConfig(
        id="kti-idea-generator",
        name="KTI Idea Generator",
        category="asisten-lomba",
        description="Generate scientific paper ideas",
        token_cost=1,
    ),
    FeatureConfig(
        id="business-plan-generator",
        name="Business Plan Generator",
        category="asisten-lomba",
        description="Create business plans",
        token_cost=1,
    ),
    # Personal branding (premium)
    FeatureConfig(
        id="instagram-bio-analyzer",
        name="Instagram Bio Analyzer",
        category="personal-branding",
        description="Analyze and optimize an Instagram bio",
        is_premium=True,
        token_cost=3,
    ),
    FeatureConfig(
        id="linkedin-profile-optimizer",
        name="LinkedIn Profile Optimizer",
        category="personal-branding",
        description="Optimize a LinkedIn headline and summary",
        is_premium=True,
        token_cost=3,
    ),
    # Daily tools (free tier)
    FeatureConfig(
        id="generator-prompt-veo",
        name="Generator Prompt Veo",
        category="daily-tools",
        description="Generate prompts for Veo video creation",
        token_cost=1,
    ),
    FeatureConfig(
        id="prompt-enhancer-topik-baru",
        name="Prompt Enhancer - Mempelajari Topik Baru",
        category="daily-tools",
        description="Enhance prompts for learning new topics",
        token_cost=1,
    ),
    FeatureConfig(
        id="prompt-enhancer-tugas",
        name="Prompt Enhancer - Menyelesaikan Tugas",
        category="daily-tools",
        description="Enhance prompts for completing assignments",
        token_cost=1,
    ),
    FeatureConfig(
        id="prompt-enhancer-konten",
        name="Prompt Enhancer - Membuat Konten",
        category="daily-tools",
        description="Enhance prompts for content creation",
        token_cost=1,
    ),
    FeatureConfig(
        id="prompt-enhancer-rencana",
        name="Prompt Enhancer - Membuat Rencana/Jadwal",
        category="daily-tools",
        description="Enhance prompts for planning and scheduling",
        token_cost=1,
    ),
    FeatureConfig(
        id="prompt-enhancer-brainstorming",
        name="Prompt Enhancer - Brainstorming Ide",
        category="daily-tools",
        description="Enhance prompts for brainstorming ideas",
        token_cost=1,
    ),
    FeatureConfig(
        id="prompt-enhancer-koding",
        name="Prompt Enhancer - Bantuan Koding/Teknis",
        category="daily-tools",
        description="Enhance prompts for coding and technical help",
        token_cost=1,
    ),
]

SUBSCRIPTION_PLANS: list[SubscriptionPlan] = [
    SubscriptionPlan(
        id=PremiumPlan.MONTHLY,
        name="Premium Monthly",
        price=39000,
        bonus_tokens=30,
        period_months=1,
        description="Access all premium features + 30 tokens",
    ),
    SubscriptionPlan(
        id=PremiumPlan.YEARLY,
        name="Premium Yearly",
        price=390000,
        bonus_tokens=150,
        period_months=12,
        description="Access all premium features + 150 tokens (Save 17%)",
    ),
]

TOKEN_PACKAGES: list[TokenPackage] = [
    TokenPackage(id="small", name="5 Tokens", tokens=5, price=7495),
    TokenPackage(id="medium", name="10 Tokens", tokens=10, price=9999),
    TokenPackage(id="large", name="50 Tokens", tokens=50, price=44950),
    TokenPackage(id="xlarge", name="100 Tokens", tokens=100, price=79900),
]

# Lookup dictionaries for fast access
FEATURE_LOOKUP: dict[str, FeatureConfig] = {f.id: f for f in FEATURES}
PLAN_LOOKUP: dict[str, SubscriptionPlan] = {p.id.value: p for p in SUBSCRIPTION_PLANS}
PACKAGE_LOOKUP: dict[str, TokenPackage] = {pkg.id: pkg for pkg in TOKEN_PACKAGES}


def get_feature(feature_id: str) -> FeatureConfig | None:
    return FEATURE_LOOKUP.get(feature_id)


def get_features_by_category(category: str) -> list[FeatureConfig]:
    return [f for f in FEATURES if f.category == category]


def get_plan(plan_id: str) -> SubscriptionPlan | None:
    return PLAN_LOOKUP.get(plan_id)


def get_package(package_id: str) -> TokenPackage | None:
    return PACKAGE_LOOKUP.get(package_id)
