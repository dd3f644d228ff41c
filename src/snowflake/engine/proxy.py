#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

from urllib.parse import unquote


def get_proxy_url(
    proxy_host: str | None,
    proxy_port: str | None,
    proxy_user: str | None = None,
    proxy_password: str | None = None,
) -> str | None:
    http_prefix = "http://"
    https_prefix = "https://"

    if proxy_host and proxy_port:
        if proxy_host.startswith(http_prefix):
            host = proxy_host[len(http_prefix) :]
        elif proxy_host.startswith(https_prefix):
            host = proxy_host[len(https_prefix) :]
        else:
            host = proxy_host
        auth = (
            f"{proxy_user or ''}:{proxy_password or ''}@"
            if proxy_user or proxy_password
            else ""
        )
        return f"{http_prefix}{auth}{host}:{proxy_port}"

    return None


def get_no_proxy(non_proxy_hosts: str | None) -> str | None:
    """Converts a url-encoded, ``|``-separated host list to the ``no_proxy`` format.

    Wildcards such as ``*.example.com`` become suffix matches (``.example.com``).
    """
    if not non_proxy_hosts:
        return None
    hosts = []
    for host in unquote(non_proxy_hosts).split("|"):
        host = host.strip()
        if not host:
            continue
        if host.startswith("*"):
            host = host[1:]
        hosts.append(host)
    return ",".join(hosts) or None
