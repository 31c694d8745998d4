import logging
import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, reject_null_fields
from app.models.enums import GoalPriority, GoalStatus, TemplateStatus
from app.models.goal import Goal, GoalCreate, GoalRead
from app.models.goal_template import (
    GoalTemplate,
    GoalTemplateCreate,
    GoalTemplateUpdate,
    UseTemplateRequest,
)
from app.models.user import User
from app.services import aggregation
from app.services.activity_service import TemplateDetails, actor_for, log_activity
from app.services.goal_service import GoalService
from app.services.permissions import ensure_admin, is_admin

logger = logging.getLogger(__name__)

RECENT_DAYS = 30
USAGE_MONTHS = 12
HIGHLIGHT_LIMIT = 5
POPULAR_PER_CATEGORY = 3


def month_keys(now: datetime, months: int) -> List[str]:
    """YYYY-MM keys for the last `months` months, oldest first, ending with the current month."""
    keys = []
    for offset in range(months - 1, -1, -1):
        year, month = now.year, now.month - offset
        while month <= 0:
            month += 12
            year -= 1
        keys.append(f"{year}-{month:02d}")
    return keys


class GoalTemplateService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_template(self, template_id: UUID) -> GoalTemplate:
        template = await self.session.get(GoalTemplate, template_id)
        if not template:
            raise NotFoundError("Goal template not found")
        return template

    async def _ensure_unique_name(self, name: str, exclude_id: Optional[UUID] = None) -> None:
        stmt = select(GoalTemplate.id).where(
            GoalTemplate.name == name, GoalTemplate.status == TemplateStatus.ACTIVE
        )
        if exclude_id:
            stmt = stmt.where(GoalTemplate.id != exclude_id)
        if (await self.session.execute(stmt)).first():
            raise ConflictError("A template with this name already exists")

    @staticmethod
    def _ensure_owner(template: GoalTemplate, current_user: User, action: str) -> None:
        if not is_admin(current_user) and template.createdById != current_user.id:
            raise ForbiddenError(f"You can only {action} templates you created")

    # --- CRUD ---

    async def create(self, template_in: GoalTemplateCreate, current_user: User) -> GoalTemplate:
        ensure_admin(current_user, "Only administrators can create goal templates")
        if template_in.status == TemplateStatus.ACTIVE:
            await self._ensure_unique_name(template_in.name)

        template = GoalTemplate(**template_in.model_dump(), createdById=current_user.id)
        self.session.add(template)
        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal_template",
            template.id,
            TemplateDetails(action="CREATE_TEMPLATE", name=template.name),
        )
        await self.session.commit()
        return template

    async def list(
        self,
        current_user: User,
        category: Optional[str] = None,
        priority: Optional[GoalPriority] = None,
        status: Optional[TemplateStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        stmt = select(GoalTemplate)
        # Volunteers only browse what they can use
        if not is_admin(current_user):
            stmt = stmt.where(GoalTemplate.status == TemplateStatus.ACTIVE)
        elif status:
            stmt = stmt.where(GoalTemplate.status == status)

        if category:
            stmt = stmt.where(GoalTemplate.category == category)
        if priority:
            stmt = stmt.where(GoalTemplate.priority == priority)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(col(GoalTemplate.name).ilike(pattern), col(GoalTemplate.description).ilike(pattern)))

        total = (await self.session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        page = max(page, 1)
        limit = max(limit, 1)
        stmt = (
            stmt.order_by(col(GoalTemplate.usageCount).desc(), col(GoalTemplate.createdAt).desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        templates = (await self.session.execute(stmt)).scalars().all()
        return {
            "templates": templates,
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit),
        }

    async def get(self, template_id: UUID, current_user: User) -> GoalTemplate:
        template = await self._get_template(template_id)
        if not is_admin(current_user) and template.status != TemplateStatus.ACTIVE:
            raise NotFoundError("Goal template not found")
        return template

    async def update(self, template_id: UUID, template_in: GoalTemplateUpdate, current_user: User) -> GoalTemplate:
        template = await self._get_template(template_id)
        self._ensure_owner(template, current_user, "update")

        changes = template_in.model_dump(exclude_unset=True)
        reject_null_fields(changes, nullable=("notes",))
        if changes.get("name") and changes["name"] != template.name:
            await self._ensure_unique_name(changes["name"], exclude_id=template.id)

        for field, value in changes.items():
            setattr(template, field, value)
        template.updatedAt = datetime.utcnow()
        self.session.add(template)

        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal_template",
            template.id,
            TemplateDetails(action="UPDATE_TEMPLATE", name=template.name),
        )
        await self.session.commit()
        return template

    async def archive(self, template_id: UUID, current_user: User) -> None:
        """Templates are never hard-deleted; goals keep their templateId."""
        template = await self._get_template(template_id)
        self._ensure_owner(template, current_user, "delete")

        template.status = TemplateStatus.ARCHIVED
        template.updatedAt = datetime.utcnow()
        self.session.add(template)
        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal_template",
            template.id,
            TemplateDetails(action="ARCHIVE_TEMPLATE", name=template.name),
        )
        await self.session.commit()

    async def duplicate(self, template_id: UUID, current_user: User) -> GoalTemplate:
        ensure_admin(current_user, "Only administrators can duplicate templates")
        original = await self._get_template(template_id)

        name = f"{original.name} (Copy)"
        await self._ensure_unique_name(name)
        copy = GoalTemplate(
            name=name,
            description=original.description,
            category=original.category,
            priority=original.priority,
            defaultDuration=original.defaultDuration,
            tags=list(original.tags or []),
            notes=original.notes,
            status=TemplateStatus.ACTIVE,
            createdById=current_user.id,
        )
        self.session.add(copy)
        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal_template",
            copy.id,
            TemplateDetails(action="DUPLICATE_TEMPLATE", name=copy.name),
        )
        await self.session.commit()
        return copy

    async def use(self, request: UseTemplateRequest, current_user: User) -> GoalRead:
        """Create a goal pre-filled from an active template, then count the use."""
        template = await self.session.get(GoalTemplate, request.templateId)
        if not template or template.status != TemplateStatus.ACTIVE:
            raise NotFoundError("Goal template not found or inactive")

        volunteer_id = request.volunteerId or current_user.id
        if volunteer_id != current_user.id and not is_admin(current_user):
            raise ForbiddenError("Only administrators can create goals for other volunteers")

        start_date = date.today()
        goal_in = GoalCreate(
            title=request.title,
            description=request.description or template.description,
            category=template.category,
            priority=template.priority,
            startDate=start_date,
            dueDate=request.dueDate or start_date + timedelta(days=template.defaultDuration),
            volunteerId=volunteer_id,
            tags=list(template.tags or []),
            notes=[request.customNotes] if request.customNotes else [],
            templateId=template.id,
        )
        goal = await GoalService(self.session).create(goal_in, current_user)

        template.usageCount += 1
        self.session.add(template)
        log_activity(
            self.session,
            actor_for(current_user.id),
            "goal_template",
            template.id,
            TemplateDetails(action="USE_TEMPLATE", name=template.name, goalId=goal.id),
        )
        await self.session.commit()

        logger.info(f"Template {template.id} used, usage count now {template.usageCount}")
        return goal

    # --- Reporting ---

    async def categories(self) -> List[str]:
        result = await self.session.execute(
            select(GoalTemplate.category).where(GoalTemplate.status == TemplateStatus.ACTIVE).distinct()
        )
        return sorted(c for c in result.scalars().all() if c)

    async def popular(self, limit: int = 10) -> List[GoalTemplate]:
        result = await self.session.execute(
            select(GoalTemplate)
            .where(GoalTemplate.status == TemplateStatus.ACTIVE)
            .order_by(col(GoalTemplate.usageCount).desc(), col(GoalTemplate.createdAt).desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def usage_stats(self, template_id: UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
        template = await self._get_template(template_id)
        now = now or datetime.utcnow()

        goals = (await self.session.execute(select(Goal).where(Goal.templateId == template_id))).scalars().all()
        stats = aggregation.summarize(goals)

        usage_by_month = dict.fromkeys(month_keys(now, USAGE_MONTHS), 0)
        for goal in goals:
            key = goal.createdAt.strftime("%Y-%m")
            if key in usage_by_month:
                usage_by_month[key] += 1

        return {
            "totalUsage": template.usageCount,
            "recentUsage": sum(1 for g in goals if g.createdAt >= now - timedelta(days=RECENT_DAYS)),
            "avgCompletionRate": stats["completionRate"],
            "goalsCreated": stats["total"],
            "completedGoals": stats["completed"],
            "activeGoals": sum(1 for g in goals if g.status in (GoalStatus.PENDING, GoalStatus.IN_PROGRESS)),
            "usageByMonth": [{"month": month, "count": count} for month, count in usage_by_month.items()],
        }

    async def category_stats(self) -> List[Dict[str, Any]]:
        templates = (
            await self.session.execute(select(GoalTemplate).where(GoalTemplate.status == TemplateStatus.ACTIVE))
        ).scalars().all()

        by_category: Dict[str, List[GoalTemplate]] = {}
        for template in templates:
            by_category.setdefault(template.category, []).append(template)

        stats = []
        for category, members in by_category.items():
            members.sort(key=lambda t: t.usageCount, reverse=True)
            total_usage = sum(t.usageCount for t in members)
            stats.append({
                "category": category,
                "totalTemplates": len(members),
                "totalUsage": total_usage,
                "avgUsage": round(total_usage / len(members)),
                "popularTemplates": members[:POPULAR_PER_CATEGORY],
            })
        stats.sort(key=lambda s: s["totalUsage"], reverse=True)
        return stats

    async def analytics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        templates = (await self.session.execute(select(GoalTemplate))).scalars().all()
        active = [t for t in templates if t.status == TemplateStatus.ACTIVE]
        total_usage = sum(t.usageCount for t in templates)

        recent_cutoff = now - timedelta(days=RECENT_DAYS)
        recently_created = sorted(
            (t for t in active if t.createdAt > recent_cutoff), key=lambda t: t.createdAt, reverse=True
        )
        most_used = sorted(active, key=lambda t: (t.usageCount, t.createdAt), reverse=True)

        return {
            "totalTemplates": len(templates),
            "activeTemplates": len(active),
            "totalUsage": total_usage,
            "avgUsagePerTemplate": round(total_usage / len(templates)) if templates else 0,
            "topCategories": (await self.category_stats())[:HIGHLIGHT_LIMIT],
            "recentlyCreated": recently_created[:HIGHLIGHT_LIMIT],
            "mostUsed": most_used[:HIGHLIGHT_LIMIT],
        }
