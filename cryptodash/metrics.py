"""Metrics exposition helpers for JSON and Prometheus outputs.

Kept apart from api.py so the route module only wires things together.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable


def collect_provider_stats(providers: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
    out = {}
    for provider in providers:
        if provider is None or not hasattr(provider, 'stats'):
            continue
        out[provider.name] = provider.stats()
    return out


def emit_prometheus(lines: list[str], name: str, value: Any, mtype: str, help_text: str):
    lines.append(f'# HELP {name} {help_text}')
    lines.append(f'# TYPE {name} {mtype}')
    if value is None:
        value = 'NaN'
    elif isinstance(value, bool):
        value = int(value)
    lines.append(f'{name} {value}')


def emit_provider_prometheus(lines: list[str], stats: Dict[str, Dict[str, Any]]):
    for name, s in stats.items():
        cache = s.get('cache') or {}
        limiter = s.get('rate_limiter') or {}
        emit_prometheus(lines, f'provider_{name}_upstream_calls_total', s.get('upstream_calls', 0), 'counter', f'Upstream HTTP calls issued by {name}')
        emit_prometheus(lines, f'provider_{name}_upstream_errors_total', s.get('upstream_errors', 0), 'counter', f'Upstream calls to {name} that failed')
        emit_prometheus(lines, f'provider_{name}_fallbacks_total', s.get('fallbacks', 0), 'counter', f'Fallback values served for {name}')
        emit_prometheus(lines, f'provider_{name}_fallback_only', s.get('fallback_only', False), 'gauge', f'1 when {name} runs in fallback-only mode')
        emit_prometheus(lines, f'provider_{name}_cache_size', cache.get('size', 0), 'gauge', f'Live cache entries for {name}')
        emit_prometheus(lines, f'provider_{name}_cache_hits_total', cache.get('hits', 0), 'counter', f'Cache hits for {name}')
        emit_prometheus(lines, f'provider_{name}_cache_misses_total', cache.get('misses', 0), 'counter', f'Cache misses for {name}')
        emit_prometheus(lines, f'provider_{name}_cache_hit_rate', cache.get('hit_rate'), 'gauge', f'Cache hit rate for {name}')
        emit_prometheus(lines, f'provider_{name}_rate_limit_waits_total', limiter.get('total_waits', 0), 'counter', f'Rate limiter waits for {name}')
        emit_prometheus(lines, f'provider_{name}_rate_limit_wait_seconds_total', limiter.get('total_wait_seconds', 0.0), 'counter', f'Seconds spent waiting on the {name} rate limiter')


def render_prometheus(providers: Iterable[Any], extra: Dict[str, Any] | None = None) -> str:
    lines: list[str] = []
    emit_provider_prometheus(lines, collect_provider_stats(providers))
    for name, value in (extra or {}).items():
        emit_prometheus(lines, name, value, 'counter', name.replace('_', ' '))
    return '\n'.join(lines) + '\n'
