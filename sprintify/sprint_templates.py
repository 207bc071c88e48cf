"""Sprint template catalog.

Static presets mapping a template key to its duration, difficulty, phases and
recommended task/milestone counts.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from fractions import Fraction
from typing import Any, Dict, List, Mapping, Optional, Union

from sprintify.data import SprintDifficulty, SprintTemplate, SprintType
from sprintify.validators import ValidationResult

MAX_DURATION_DAYS = 365

DAILY_MINUTES = {
    SprintDifficulty.BEGINNER: 60,
    SprintDifficulty.INTERMEDIATE: 90,
    SprintDifficulty.ADVANCED: 120,
    SprintDifficulty.EXPERT: 150,
}


@dataclass
class Phase:
    name: str
    description: str
    duration: int
    tasks: List[str] = field(default_factory=list)


@dataclass
class TemplateConfig:
    id: SprintTemplate
    name: str
    description: str
    duration: int
    difficulty: SprintDifficulty
    recommended_tasks: int
    recommended_milestones: int
    phases: List[Phase] = field(default_factory=list)
    suitable_for: List[SprintType] = field(default_factory=lambda: [SprintType.LEARNING, SprintType.PROJECT])
    success_factors: List[str] = field(default_factory=list)
    tips: List[str] = field(default_factory=list)


@dataclass
class Recommendations:
    duration: int
    recommended_tasks: int
    recommended_milestones: int
    daily_time_commitment: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "duration": self.duration,
            "recommendedTasks": self.recommended_tasks,
            "recommendedMilestones": self.recommended_milestones,
            "dailyTimeCommitment": self.daily_time_commitment,
        }


SPRINT_TEMPLATES: Dict[SprintTemplate, TemplateConfig] = {
    SprintTemplate.SEVEN_DAYS: TemplateConfig(
        id=SprintTemplate.SEVEN_DAYS,
        name="7-day quick sprint",
        description="A short push for learning a small skill or shipping a small project",
        duration=7,
        difficulty=SprintDifficulty.BEGINNER,
        recommended_tasks=5,
        recommended_milestones=2,
        phases=[
            Phase("Preparation", "Make the plan and gather resources", 1,
                  ["Collect resources", "Draft the plan", "Set up the environment"]),
            Phase("Execution", "Focus on the core tasks", 5,
                  ["Core learning", "Hands-on practice", "Problem solving"]),
            Phase("Wrap-up", "Review and consolidate the results", 1,
                  ["Organise results", "Write up lessons learned", "Plan next steps"]),
        ],
        success_factors=["A clear, specific goal", "A tight schedule", "High focus", "Adjusting the plan quickly"],
        tips=["Pick a relatively simple goal", "Invest at least 2-3 hours a day",
              "Avoid running tasks in parallel", "Record progress and problems as you go"],
    ),
    SprintTemplate.TWENTY_ONE_DAYS: TemplateConfig(
        id=SprintTemplate.TWENTY_ONE_DAYS,
        name="21-day habit builder",
        description="A medium-length sprint built around the 21-day habit formation idea",
        duration=21,
        difficulty=SprintDifficulty.INTERMEDIATE,
        recommended_tasks=8,
        recommended_milestones=3,
        phases=[
            Phase("Adaptation", "Establish the habit and push through resistance", 7,
                  ["Basic practice", "Build the habit", "Overcome resistance"]),
            Phase("Stabilisation", "Consolidate the habit and raise quality", 7,
                  ["Deeper practice", "Raise quality", "Reinforce skills"]),
            Phase("Reinforcement", "Lock the habit in and show results", 7,
                  ["Advanced application", "Produce output", "Share experience"]),
        ],
        success_factors=["Practise every day", "Improve step by step", "Timely feedback", "Community support"],
        tips=["The first 7 days matter most", "Set a clear daily routine",
              "Find a partner to keep each other accountable", "Log daily progress and how it felt"],
    ),
    SprintTemplate.THIRTY_DAYS: TemplateConfig(
        id=SprintTemplate.THIRTY_DAYS,
        name="30-day deep dive",
        description="Learn a skill in depth or finish a medium sized project",
        duration=30,
        difficulty=SprintDifficulty.INTERMEDIATE,
        recommended_tasks=12,
        recommended_milestones=4,
        phases=[
            Phase("Foundations", "Lay the groundwork and build a framework", 10,
                  ["Theory", "Basic exercises", "Build the framework"]),
            Phase("Growth", "Go deeper and level up", 15,
                  ["Advanced study", "Project practice", "Problem solving"]),
            Phase("Delivery", "Integrate and deliver results", 5,
                  ["Polish the project", "Present results", "Retrospective"]),
        ],
        success_factors=["A systematic learning plan", "Theory combined with practice",
                         "Continuous feedback", "Validating results per phase"],
        tips=["Write down a detailed learning path", "Review once a week",
              "Practise on a real project", "Keep structured notes"],
    ),
    SprintTemplate.SIXTY_DAYS: TemplateConfig(
        id=SprintTemplate.SIXTY_DAYS,
        name="60-day skill mastery",
        description="Deep skill improvement or a large project",
        duration=60,
        difficulty=SprintDifficulty.ADVANCED,
        recommended_tasks=20,
        recommended_milestones=6,
        phases=[
            Phase("Planning", "Detailed planning and preparation", 10,
                  ["Requirements analysis", "Technical research", "Prepare resources"]),
            Phase("Foundations", "Learn the core skills and build the base", 20,
                  ["Core learning", "Basic practice", "Accumulate skills"]),
            Phase("Deep practice", "Build the project and apply the skills", 20,
                  ["Project development", "Apply skills", "Tackle hard problems"]),
            Phase("Refinement", "Optimise and finish", 10,
                  ["Performance tuning", "Complete features", "Documentation"]),
        ],
        success_factors=["Long-term persistence", "Systems thinking", "Problem solving", "Self-motivation"],
        tips=["Break it into smaller goals", "Set milestone checkpoints",
              "Keep a steady rhythm", "Look for expert guidance"],
    ),
    SprintTemplate.NINETY_DAYS: TemplateConfig(
        id=SprintTemplate.NINETY_DAYS,
        name="90-day career shift",
        description="Change careers or build a complete professional skill set",
        duration=90,
        difficulty=SprintDifficulty.EXPERT,
        recommended_tasks=30,
        recommended_milestones=9,
        phases=[
            Phase("Groundwork", "Learn the fundamentals systematically", 30,
                  ["Theory", "Core skills", "Tooling"]),
            Phase("Practice", "Real projects and skill growth", 30,
                  ["Hands-on projects", "Level up", "Gain experience"]),
            Phase("Specialisation", "Depth and a portfolio", 30,
                  ["Specialise", "Portfolio", "Job search preparation"]),
        ],
        success_factors=["Strong self-discipline", "Systematic learning", "Continuous improvement",
                         "A professional network"],
        tips=["Draw up a detailed 90-day roadmap", "Hold a deep review every month",
              "Join a professional community", "Prepare a portfolio and resume"],
    ),
    SprintTemplate.CUSTOM: TemplateConfig(
        id=SprintTemplate.CUSTOM,
        name="Custom sprint",
        description="Plan a sprint around your own needs",
        duration=0,
        difficulty=SprintDifficulty.INTERMEDIATE,
        recommended_tasks=0,
        recommended_milestones=0,
        phases=[],
        success_factors=["A clear goal", "Realistic timing", "Actionable task breakdown", "Effective tracking"],
        tips=["Set the length to fit your situation", "Make the goal specific and measurable",
              "Balance task difficulty", "Add checkpoints and milestones"],
    ),
}

# Weekly rates for templates without a fixed length (custom).
FALLBACK_TEMPLATE = SprintTemplate.THIRTY_DAYS


def get_template_info(template_id: Union[SprintTemplate, str]) -> TemplateConfig:
    return SPRINT_TEMPLATES[SprintTemplate(template_id)]


def get_recommended_templates(sprint_type: Union[SprintType, str]) -> List[SprintTemplate]:
    sprint_type = SprintType(sprint_type)
    return [key for key, template in SPRINT_TEMPLATES.items() if sprint_type in template.suitable_for]


def get_templates_by_difficulty(difficulty: Union[SprintDifficulty, str]) -> List[SprintTemplate]:
    difficulty = SprintDifficulty(difficulty)
    return [key for key, template in SPRINT_TEMPLATES.items() if template.difficulty == difficulty]


def calculate_template_recommendations(template_id, custom_duration: Optional[int] = None) -> Recommendations:
    """Scale a template's task and milestone counts to another duration.

    ``ceil(recommended / (template_days / 7) * (duration / 7))``; at least one
    milestone is always recommended.
    """
    template = get_template_info(template_id)
    duration = custom_duration or template.duration
    rates = template if template.duration else SPRINT_TEMPLATES[FALLBACK_TEMPLATE]

    # the weekly factors cancel; exact fractions keep the unscaled case an identity
    scale = Fraction(duration, rates.duration)
    recommended_tasks = math.ceil(rates.recommended_tasks * scale)
    recommended_milestones = max(1, math.ceil(rates.recommended_milestones * scale))

    return Recommendations(
        duration=duration,
        recommended_tasks=recommended_tasks,
        recommended_milestones=recommended_milestones,
        daily_time_commitment=DAILY_MINUTES[template.difficulty],
    )


def _field(config: Any, name: str, default=None):
    if isinstance(config, Mapping):
        return config.get(name, default)
    return getattr(config, name, default)


def validate_template_config(config: Union[TemplateConfig, Mapping[str, Any]]) -> ValidationResult:
    """Check a user supplied template; errors are returned, not raised."""
    errors = []
    name = _field(config, "name")
    duration = _field(config, "duration")
    phases = _field(config, "phases") or []

    if not name or not str(name).strip():
        errors.append("Template name cannot be empty")
    if not duration or duration <= 0:
        errors.append("Duration must be greater than 0")
    if duration and duration > MAX_DURATION_DAYS:
        errors.append(f"Duration cannot exceed {MAX_DURATION_DAYS} days")
    if not phases:
        errors.append("At least one phase is required")
    else:
        total = sum(_field(phase, "duration", 0) or 0 for phase in phases)
        if total != duration:
            errors.append("Phase durations must add up to the sprint duration")
    return ValidationResult(errors)


def default_end_date(template_id, start: datetime, custom_duration: Optional[int] = None) -> datetime:
    duration = calculate_template_recommendations(template_id, custom_duration).duration
    if duration <= 0:
        raise ValueError("A custom sprint needs a duration")
    return start + timedelta(days=duration)
