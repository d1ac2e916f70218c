from .app import create_app
import click
from sqlalchemy import func

from .app.models import (
    TWOFA_STATES,
    TWOFA_STATE_ENABLED,
    TWOFA_STATE_PENDING,
    TwoFactorBackupCode,
    TwoFactorCredential,
    Users,
)
from .app.extensions import db

app = create_app()


@app.cli.command("twofa-report")
@click.option("--organization", "organization_id", default=None, help="Filtra por organización (UUID).")
def twofa_report(organization_id=None):
    """
    Resume la adopción de 2FA por organización: usuarios, credenciales por
    estado y códigos de respaldo disponibles.
    """
    users_stmt = db.select(Users.organization_id, func.count(Users.id)).where(
        Users.deleted_at.is_(None)
    ).group_by(Users.organization_id)
    states_stmt = db.select(
        TwoFactorCredential.organization_id, TwoFactorCredential.state, func.count(TwoFactorCredential.id)
    ).group_by(TwoFactorCredential.organization_id, TwoFactorCredential.state)
    codes_stmt = (
        db.select(TwoFactorCredential.organization_id, func.count(TwoFactorBackupCode.id))
        .join(TwoFactorBackupCode, TwoFactorBackupCode.credential_id == TwoFactorCredential.id)
        .where(
            TwoFactorCredential.state == TWOFA_STATE_ENABLED,
            TwoFactorBackupCode.used_at.is_(None),
        )
        .group_by(TwoFactorCredential.organization_id)
    )
    if organization_id:
        users_stmt = users_stmt.where(Users.organization_id == organization_id)
        states_stmt = states_stmt.where(TwoFactorCredential.organization_id == organization_id)
        codes_stmt = codes_stmt.where(TwoFactorCredential.organization_id == organization_id)

    report = {}

    def _row(org):
        key = str(org) if org else "-"
        return report.setdefault(key, {"users": 0, "codes": 0, **{state: 0 for state in TWOFA_STATES}})

    for org, total in db.session.execute(users_stmt):
        _row(org)["users"] = total
    for org, state, total in db.session.execute(states_stmt):
        _row(org)[state] = total
    for org, total in db.session.execute(codes_stmt):
        _row(org)["codes"] = total

    if not report:
        click.echo("Sin usuarios registrados.")
        return

    click.echo("organización                          usuarios  activos  pendientes  códigos")
    for org in sorted(report):
        row = report[org]
        click.echo(
            f"{org:36s}  {row['users']:8d}  {row[TWOFA_STATE_ENABLED]:7d}  "
            f"{row[TWOFA_STATE_PENDING]:10d}  {row['codes']:7d}"
        )


@app.shell_context_processor
def make_shell_context():

    from .app.models import AuditLog, UserSessions

    return {
        "app": app,
        "db": db,
        "Users": Users,
        "UserSessions": UserSessions,
        "TwoFactorCredential": TwoFactorCredential,
        "TwoFactorBackupCode": TwoFactorBackupCode,
        "AuditLog": AuditLog,
    }


if __name__ == "__main__":
    app.run(debug=True)
