"""Builders shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta

from pjn_sync.db.schemas import SessionState


def valid_session(**overrides) -> SessionState:
    values = {
        "cookies": ["JSESSIONID=abc"],
        "access_token": "token",
        "refresh_token": "refresh",
        "access_token_expires_at": datetime.utcnow() + timedelta(hours=1),
    }
    values.update(overrides)
    return SessionState(**values)


def search_results_html(rows) -> str:
    """Portal search results table; ``rows`` are (expediente, dependencia, caratula, situacion, fecha)."""
    body = "".join(
        "<tr>"
        f"<td>{exp}</td><td>{dep}</td><td>{car}</td><td>{sit}</td><td>{fecha}</td>"
        '<td><a id="j_idt1:dataTable:%d:verExp" href="#">Ver</a></td>'
        "</tr>" % i
        for i, (exp, dep, car, sit, fecha) in enumerate(rows)
    )
    return (
        '<html><body><table id="j_idt1:dataTable" class="dataTable">'
        "<thead><tr><th>Expediente</th><th>Dependencia</th><th>Carátula</th>"
        "<th>Situación</th><th>Últ. Act.</th><th></th></tr></thead>"
        f"<tbody>{body}</tbody></table></body></html>"
    )
