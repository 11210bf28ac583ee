"""
Curriculum Service

Supabase-backed access to lessons, lesson items and lesson progress. The tutor
only depends on the CurriculumProvider protocol (next-lesson lookup); the
backend also uses this service to load lesson context and record completions.

Tables: user_enrollments, lessons, lesson_items, user_lesson_progress.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NextLesson:
    lesson_id: str
    title: str
    objective: str


@dataclass(frozen=True)
class Lesson:
    id: str
    curriculum_id: Optional[str]
    order: int
    title: str
    objective: str


@dataclass(frozen=True)
class LessonItem:
    """One practice phrase of a lesson."""
    id: str
    lesson_id: str
    order: int
    content_arabic: str
    content_english: str
    content_transliteration: Optional[str] = None


class CurriculumProvider(Protocol):
    async def get_next_lesson(self, enrollment_id: str) -> Optional[NextLesson]:
        """Next uncompleted lesson, or None when the curriculum is finished."""
        ...


class CurriculumService:
    """Curriculum queries over a Supabase client."""

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    async def get_next_lesson(self, enrollment_id: str) -> Optional[NextLesson]:
        """
        Find the first lesson (by order) of the enrollment's curriculum that
        has no completed progress row.

        Returns None when every lesson is done or the lookup fails.
        """
        try:
            enrollment = self.supabase.table('user_enrollments') \
                .select('curriculum_id') \
                .eq('id', enrollment_id) \
                .limit(1) \
                .execute()

            if not enrollment.data:
                logger.warning(f"⚠️ [Curriculum] Enrollment {enrollment_id} not found")
                return None
            curriculum_id = enrollment.data[0].get('curriculum_id')

            progress = self.supabase.table('user_lesson_progress') \
                .select('lesson_id') \
                .eq('enrollment_id', enrollment_id) \
                .eq('status', 'completed') \
                .execute()
            completed_ids = {row['lesson_id'] for row in (progress.data or [])}

            lessons = self.supabase.table('lessons') \
                .select('id, title, objective, order') \
                .eq('curriculum_id', curriculum_id) \
                .order('order') \
                .execute()

            for row in lessons.data or []:
                if row['id'] not in completed_ids:
                    return NextLesson(
                        lesson_id=row['id'],
                        title=row.get('title') or '',
                        objective=row.get('objective') or '',
                    )

            logger.info(f"🎓 [Curriculum] Enrollment {enrollment_id} has no remaining lessons")
            return None
        except Exception as e:
            logger.error(f"❌ [Curriculum] Error fetching next lesson: {e}")
            return None

    async def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        try:
            result = self.supabase.table('lessons') \
                .select('id, curriculum_id, order, title, objective') \
                .eq('id', lesson_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.warning(f"⚠️ [Curriculum] Could not fetch lesson {lesson_id}: {e}")
            return None

        if not result.data:
            return None
        row = result.data[0]
        return Lesson(
            id=row['id'],
            curriculum_id=row.get('curriculum_id'),
            order=row.get('order') or 0,
            title=row.get('title') or '',
            objective=row.get('objective') or '',
        )

    async def get_lesson_items(self, lesson_id: str) -> List[LessonItem]:
        """Practice items of a lesson in teaching order."""
        result = self.supabase.table('lesson_items') \
            .select('*') \
            .eq('lesson_id', lesson_id) \
            .order('order') \
            .execute()

        return [
            LessonItem(
                id=row['id'],
                lesson_id=row['lesson_id'],
                order=row.get('order') or 0,
                content_arabic=row.get('content_arabic') or '',
                content_english=row.get('content_english') or '',
                content_transliteration=row.get('content_transliteration'),
            )
            for row in result.data or []
        ]

    async def complete_lesson(self, enrollment_id: str, lesson_id: str) -> None:
        """Mark a lesson completed for an enrollment (creates the progress row if needed)."""
        self.supabase.table('user_lesson_progress') \
            .upsert(
                {
                    "enrollment_id": enrollment_id,
                    "lesson_id": lesson_id,
                    "status": "completed",
                },
                on_conflict="enrollment_id,lesson_id",
            ) \
            .execute()
        logger.info(f"✅ [Curriculum] Lesson {lesson_id} completed for enrollment {enrollment_id}")
