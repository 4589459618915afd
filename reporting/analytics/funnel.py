"""
Session funnel and journey path reports over clickstream events

Author: Adryan R A
"""

import logging
from typing import Dict, List
import numpy as np
import pandas as pd

from reporting.analytics.base import BaseReport, percentage
from reporting.utils.config import Settings

logger = logging.getLogger(__name__)

# Funnel stages in order; a stage's position is its depth in the funnel
FUNNEL_STAGES = ['Home Page', 'Product View', 'Add to Cart', 'Checkout', 'Purchase']

PAGE_EVENT_COLUMNS = ['session_id', 'customer_id', 'page_url', 'event_type', 'event_timestamp']


def classify_sessions(page_events: pd.DataFrame, settings: Settings) -> pd.DataFrame:
    """
    Classify each session by the furthest funnel stage it reached.

    Args:
        page_events: Clickstream events
        settings: URL and event names that mark each stage

    Returns:
        One row per session with ``furthest_stage`` (0 = never entered the
        funnel, 1..5 = index into FUNNEL_STAGES counted from one)
    """
    if page_events.empty:
        return pd.DataFrame(columns=['session_id', 'customer_id', 'furthest_stage'])

    url = page_events['page_url'].fillna('').astype(str)
    event_type = page_events['event_type'].fillna('').astype(str)

    stage_flags = pd.DataFrame({
        1: url == settings.home_url,
        2: url.str.startswith(settings.product_url_prefix),
        3: event_type == settings.add_to_cart_event,
        4: url == settings.checkout_url,
        5: event_type == settings.purchase_event,
    }, index=page_events.index)

    events = page_events[['session_id', 'customer_id']].copy()
    events['stage_reached'] = stage_flags.mul(stage_flags.columns, axis='columns').max(axis=1).astype(int)

    sessions = events.groupby('session_id', sort=True).agg(
        customer_id=('customer_id', 'first'),
        furthest_stage=('stage_reached', 'max'),
    ).reset_index()

    return sessions


def page_category(page_url: pd.Series, settings: Settings) -> pd.Series:
    """Map page URLs to journey categories."""
    url = page_url.fillna('').astype(str)
    conditions = [
        url == settings.home_url,
        url.str.startswith(settings.product_url_prefix),
        url == settings.cart_url,
        url == settings.checkout_url,
        url == settings.confirmation_url,
    ]
    choices = ['Home', 'Product', 'Cart', 'Checkout', 'Confirmation']
    return pd.Series(np.select(conditions, choices, default='Other'), index=page_url.index)


class FunnelReport(BaseReport):
    """
    Stage-by-stage funnel conversion.

    A session reaching a later stage counts for every earlier stage too, so
    session counts never increase down the funnel.
    """

    name = "funnel"
    required_tables = {'page_events': ['session_id', 'customer_id', 'page_url', 'event_type']}

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        sessions = classify_sessions(tables['page_events'], self.settings)
        total_sessions = len(sessions)

        stage_counts: List[int] = [
            int((sessions['furthest_stage'] >= depth).sum())
            for depth in range(1, len(FUNNEL_STAGES) + 1)
        ]
        previous_counts = [total_sessions] + stage_counts[:-1]

        rows = []
        for stage, count, previous in zip(FUNNEL_STAGES, stage_counts, previous_counts):
            rows.append({
                'funnel_step': stage,
                'sessions': count,
                'conversion_rate': percentage(count, previous),
            })

        rows.append({
            'funnel_step': 'Overall',
            'sessions': stage_counts[-1],
            'conversion_rate': percentage(stage_counts[-1], total_sessions),
        })

        logger.info(f"Funnel built from {total_sessions} sessions")
        return pd.DataFrame(rows, columns=['funnel_step', 'sessions', 'conversion_rate'])


class PathReport(BaseReport):
    """Most common session journeys ranked by frequency then conversion."""

    name = "paths"
    required_tables = {'page_events': PAGE_EVENT_COLUMNS}

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        columns = ['user_journey', 'frequency', 'avg_steps', 'conversions', 'conversion_pct']
        page_events = tables['page_events']
        if page_events.empty:
            return pd.DataFrame(columns=columns)

        separator = self.settings.path_separator

        events = page_events[['session_id', 'event_type']].copy()
        events['event_timestamp'] = pd.to_datetime(page_events['event_timestamp'], errors='coerce')
        events['page_category'] = page_category(page_events['page_url'], self.settings)
        events['converted'] = (events['event_type'] == self.settings.purchase_event).astype(int)
        events = events.sort_values(['session_id', 'event_timestamp'], kind='mergesort')

        journeys = events.groupby('session_id', sort=False).agg(
            customer_path=('page_category', lambda categories: separator.join(dict.fromkeys(categories))),
            steps_in_path=('page_category', 'size'),
            converted=('converted', 'max'),
        )

        paths = journeys.groupby('customer_path').agg(
            frequency=('steps_in_path', 'size'),
            avg_steps=('steps_in_path', 'mean'),
            conversions=('converted', 'sum'),
        ).reset_index()

        paths['avg_steps'] = paths['avg_steps'].round(2)
        paths['conversion_pct'] = percentage(paths['conversions'], paths['frequency'])
        paths = paths.rename(columns={'customer_path': 'user_journey'})

        paths = paths.sort_values(
            ['frequency', 'conversion_pct', 'user_journey'],
            ascending=[False, False, True],
        ).reset_index(drop=True)

        return paths[columns]
