"""Repository functions for evaluations, assignments and users."""

from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from evalflow.engine.aggregate import Assignment, Evaluation
from evalflow.engine.errors import ConflictError, ValidationError
from evalflow.models import AssignmentRow, EvaluationRow, User


def _assignment_to_domain(row: AssignmentRow) -> Assignment:
    return Assignment(
        id=str(row.assignment_id),
        evaluation_id=row.evaluation_id,
        user_id=row.user_id,
        sections=row.sections,
        status=row.status,
        created_by=row.created_by,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


def to_domain(row: EvaluationRow) -> Evaluation:
    """Build the aggregate from a row and its eagerly loaded assignments."""
    return Evaluation(
        id=row.evaluation_id,
        eval_number=row.eval_number,
        rfq_number=row.rfq_number,
        rfq_title=row.rfq_title,
        description=row.description,
        due_date=row.due_date,
        status=row.status,
        created_by=row.created_by,
        sections=row.sections,
        assignments=[_assignment_to_domain(a) for a in row.assignments],
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _sections_json(evaluation: Evaluation) -> dict:
    return evaluation.model_dump(mode="json", include={"sections"})["sections"]


async def get_user_by_api_key_hash(db: AsyncSession, api_key_hash: str) -> User | None:
    """Find the user owning an API key."""
    result = await db.execute(select(User).where(User.api_key_hash == api_key_hash))
    return result.scalar_one_or_none()


async def load_evaluation(db: AsyncSession, evaluation_id: int) -> Evaluation | None:
    """Load the full aggregate (sections and assignments) by id."""
    result = await db.execute(
        select(EvaluationRow).where(EvaluationRow.evaluation_id == evaluation_id)
    )
    row = result.scalar_one_or_none()
    return to_domain(row) if row else None


async def create_evaluation(db: AsyncSession, evaluation: Evaluation) -> Evaluation:
    """Insert a new evaluation; eval_number must be unique."""
    result = await db.execute(
        select(EvaluationRow.evaluation_id).where(
            EvaluationRow.eval_number == evaluation.eval_number
        )
    )
    if result.scalar_one_or_none() is not None:
        raise ValidationError(
            f"Evaluation number {evaluation.eval_number} already exists",
            eval_number=evaluation.eval_number,
        )
    row = EvaluationRow(
        eval_number=evaluation.eval_number,
        rfq_number=evaluation.rfq_number,
        rfq_title=evaluation.rfq_title,
        description=evaluation.description,
        due_date=evaluation.due_date,
        status=evaluation.status.value,
        created_by=evaluation.created_by,
        sections=_sections_json(evaluation),
        version=evaluation.version,
        created_at=evaluation.created_at,
        updated_at=evaluation.updated_at,
    )
    db.add(row)
    await db.flush()
    evaluation.id = row.evaluation_id
    return evaluation


async def save_evaluation(db: AsyncSession, evaluation: Evaluation) -> None:
    """
    Write the whole aggregate if nobody committed since it was loaded.
    Raises ConflictError when the stored version moved on.
    """
    result = await db.execute(
        update(EvaluationRow)
        .where(
            EvaluationRow.evaluation_id == evaluation.id,
            EvaluationRow.version == evaluation.version,
        )
        .values(
            status=evaluation.status.value,
            sections=_sections_json(evaluation),
            rfq_number=evaluation.rfq_number,
            rfq_title=evaluation.rfq_title,
            description=evaluation.description,
            due_date=evaluation.due_date,
            version=evaluation.version + 1,
            updated_at=evaluation.updated_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            f"Evaluation {evaluation.id} was modified concurrently",
            evaluation_id=evaluation.id,
            version=evaluation.version,
        )

    # Sync the assignment set: delete removed ones, upsert the rest.
    result = await db.execute(
        select(AssignmentRow).where(AssignmentRow.evaluation_id == evaluation.id)
    )
    existing = {str(row.assignment_id): row for row in result.scalars().all()}
    keep = {a.id for a in evaluation.assignments}
    for assignment_id, row in existing.items():
        if assignment_id not in keep:
            await db.delete(row)
    for assignment in evaluation.assignments:
        sections = [s.value for s in assignment.sections]
        row = existing.get(assignment.id)
        if row is None:
            db.add(
                AssignmentRow(
                    assignment_id=assignment.id,
                    evaluation_id=evaluation.id,
                    user_id=assignment.user_id,
                    sections=sections,
                    status=assignment.status.value,
                    created_by=assignment.created_by,
                    created_at=assignment.created_at,
                    completed_at=assignment.completed_at,
                )
            )
        else:
            row.sections = sections
            row.status = assignment.status.value
            row.completed_at = assignment.completed_at
    await db.flush()


async def delete_evaluation(db: AsyncSession, evaluation_id: int) -> bool:
    """Delete an evaluation; its assignment rows go with it. False if it did not exist."""
    result = await db.execute(
        select(EvaluationRow).where(EvaluationRow.evaluation_id == evaluation_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return False
    await db.delete(row)
    await db.flush()
    return True


async def list_evaluations(
    db: AsyncSession, status: str | None = None, search: str | None = None
) -> list[Evaluation]:
    """List evaluations, newest first, optionally filtered by status or text."""
    query = select(EvaluationRow).order_by(EvaluationRow.created_at.desc())
    if status:
        query = query.where(EvaluationRow.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                EvaluationRow.eval_number.ilike(pattern),
                EvaluationRow.rfq_number.ilike(pattern),
                EvaluationRow.rfq_title.ilike(pattern),
            )
        )
    result = await db.execute(query)
    return [to_domain(row) for row in result.scalars().all()]


async def get_evaluation_id_for_assignment(db: AsyncSession, assignment_id: str) -> int | None:
    """Evaluation owning an assignment; None for unknown or malformed ids."""
    try:
        UUID(assignment_id)
    except ValueError:
        return None
    result = await db.execute(
        select(AssignmentRow.evaluation_id).where(AssignmentRow.assignment_id == assignment_id)
    )
    return result.scalar_one_or_none()


async def list_assignments_for_user(db: AsyncSession, user_id: int) -> list[Assignment]:
    """All assignments held by a user, oldest first."""
    result = await db.execute(
        select(AssignmentRow)
        .where(AssignmentRow.user_id == user_id)
        .order_by(AssignmentRow.created_at)
    )
    return [_assignment_to_domain(row) for row in result.scalars().all()]
