"""Seed idempotent demo data for local/non-production environments."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import SessionLocal, close_engine
from app.core.enums import RoleEnum
from app.core.security import create_access_token
from app.modules.availability.repository import AvailabilityRepository
from app.modules.identity.models import User
from app.modules.identity.repository import IdentityRepository
from app.modules.identity.service import IdentityService
from app.modules.tutors.repository import TutorsRepository

DEMO_ADMIN_EMAIL = "demo-admin@tutormarket.dev"
DEMO_TUTOR_EMAIL = "demo-tutor@tutormarket.dev"
DEMO_STUDENT_EMAIL = "demo-student@tutormarket.dev"

DEMO_TUTOR_TIMEZONE = "Europe/Berlin"
DEMO_TUTOR_WEEKLY_CAP = 10
DEMO_TEMPLATE = {
    "monday": [{"start": "09:00", "end": "12:00"}, {"start": "14:00", "end": "17:00"}],
    "wednesday": [{"start": "09:00", "end": "12:00"}],
    "friday": [{"start": "16:00", "end": "20:00"}],
}


@dataclass(slots=True)
class SeedStats:
    users_created: int = 0
    users_updated: int = 0
    tutor_profile_created: bool = False
    template_saved: bool = False
    tokens: dict[str, str] = field(default_factory=dict)


async def _ensure_user(
    repository: IdentityRepository,
    *,
    email: str,
    full_name: str,
    role_name: RoleEnum,
    timezone: str,
) -> tuple[User, bool]:
    role = await repository.get_role_by_name(role_name)
    if role is None:
        raise RuntimeError(f"Role {role_name} was not found after ensure_default_roles")

    user = await repository.get_user_by_email(email)
    if user is None:
        user = await repository.create_user(
            email=email,
            full_name=full_name,
            timezone=timezone,
            role_id=role.id,
        )
        return user, True

    user.role_id = role.id
    user.timezone = timezone
    user.is_active = True
    await repository.session.flush()
    await repository.session.refresh(user, attribute_names=["role"])
    return user, False


async def _ensure_tutor_profile(session: AsyncSession, tutor_user: User) -> bool:
    repository = TutorsRepository(session)
    profile = await repository.get_profile_by_user_id(tutor_user.id)
    if profile is None:
        await repository.create_profile(
            user_id=tutor_user.id,
            display_name="Demo Tutor",
            bio="Demo tutor for local booking and payout flows.",
            hourly_rate=4_000,
            max_weekly_sessions=DEMO_TUTOR_WEEKLY_CAP,
        )
        return True

    await repository.update_profile(
        profile,
        display_name="Demo Tutor",
        max_weekly_sessions=DEMO_TUTOR_WEEKLY_CAP,
        is_approved=True,
    )
    return False


async def _run_seed(*, allow_production: bool) -> SeedStats:
    settings = get_settings()
    app_env = settings.app_env.strip().lower()
    if app_env in {"production", "prod"} and not allow_production:
        raise RuntimeError(
            "Refusing to seed demo data in production. "
            "Re-run with --allow-production only if you are absolutely sure.",
        )

    stats = SeedStats()

    async with SessionLocal() as session:
        try:
            identity_repository = IdentityRepository(session)
            await IdentityService(identity_repository).ensure_default_roles()

            users: dict[str, User] = {}
            for label, email, role_name, timezone in (
                ("admin", DEMO_ADMIN_EMAIL, RoleEnum.ADMIN, "UTC"),
                ("tutor", DEMO_TUTOR_EMAIL, RoleEnum.TUTOR, DEMO_TUTOR_TIMEZONE),
                ("student", DEMO_STUDENT_EMAIL, RoleEnum.STUDENT, "UTC"),
            ):
                user, created = await _ensure_user(
                    identity_repository,
                    email=email,
                    full_name=f"Demo {label.title()}",
                    role_name=role_name,
                    timezone=timezone,
                )
                users[label] = user
                if created:
                    stats.users_created += 1
                else:
                    stats.users_updated += 1

            stats.tutor_profile_created = await _ensure_tutor_profile(session, users["tutor"])
            await AvailabilityRepository(session).save_template(users["tutor"].id, DEMO_TEMPLATE)
            stats.template_saved = True

            await session.commit()
        except Exception:
            await session.rollback()
            raise

    stats.tokens = {label: create_access_token(str(user.id)) for label, user in users.items()}
    return stats


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Seed idempotent demo data for TutorMarket (users, tutor profile, "
            "weekly availability template) and print short-lived bearer tokens."
        ),
    )
    parser.add_argument(
        "--allow-production",
        action="store_true",
        help="Allow seeding even when APP_ENV is production/prod.",
    )
    return parser


def _print_summary(stats: SeedStats) -> None:
    print("Demo seed completed.")
    print(f"- Users created: {stats.users_created}")
    print(f"- Users updated: {stats.users_updated}")
    print(f"- Tutor profile created: {stats.tutor_profile_created}")
    print(f"- Availability template saved: {stats.template_saved}")
    print("")
    print("Bearer tokens (non-production only):")
    for label, token in stats.tokens.items():
        print(f"- {label}: {token}")


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    try:
        stats = asyncio.run(_run_seed(allow_production=args.allow_production))
    except Exception as exc:
        print(f"Demo seed failed: {exc}")
        return 1
    finally:
        asyncio.run(close_engine())

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
