"""DataSHIELD login script generation."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)

NO_RECORDS_MESSAGE = "No records found for the given project and user."

SCRIPT_HEADER = """library(DSI)
library(DSOpal)
library(dsBaseClient)
set_config(use_proxy(url="http://beam-connect", port=8062))
set_config( config( ssl_verifyhost = 0L, ssl_verifypeer = 0L ) )

builder <- DSI::newDSLoginBuilder(.silent = FALSE)
"""

SCRIPT_FOOTER = """logindata <- builder$build()
connections <- DSI::datashield.login(logins = logindata, assign = TRUE, symbol = 'D')
"""


def generate_r_script(script_lines: Sequence[str]) -> str:
    """Wrap builder lines with the DSI preamble and login call."""
    body = "".join(f"{line}\n" for line in script_lines)
    return SCRIPT_HEADER + body + SCRIPT_FOOTER


def server_name(bk: str) -> str:
    """Short site name from an app id like ``opal.site-a.broker``."""
    parts = bk.split(".")
    return parts[1] if len(parts) > 1 else bk


def build_login_lines(
    bridgeheads: Sequence[str],
    tokens: Mapping[str, str],
    tables_per_site: Mapping[str, frozenset[str]],
) -> list[str]:
    """One ``builder$append`` per table a site exposes.

    Sites lacking tables that other sites have get a comment listing them.
    """
    all_tables = set().union(*tables_per_site.values()) if tables_per_site else set()
    lines: list[str] = []

    for bk in bridgeheads:
        tables = tables_per_site.get(bk)
        if tables is None or bk not in tokens:
            continue

        missing = sorted(all_tables - tables)
        if missing:
            logger.info("Bridgehead %s is missing tables: %s", bk, missing)
            lines.append(f"\n # Tables not available for bridgehead '{bk}': {missing}")

        for table in sorted(tables):
            lines.append(
                f"builder$append(server='{server_name(bk)}', url='https://{bk}/opal/', "
                f"token='{tokens[bk]}', table='{table}', driver='OpalDriver')"
            )
        lines.append("")

    return lines
