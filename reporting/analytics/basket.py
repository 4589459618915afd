"""
Market-basket product affinity

Author: Adryan R A
"""

import logging
from typing import Dict
import numpy as np
import pandas as pd

from reporting.analytics.base import BaseReport, percentage

logger = logging.getLogger(__name__)


class ProductAffinityReport(BaseReport):
    """
    Product pairs bought together, ranked by co-occurrence.

    Affinity of a pair towards product A is the share of A's orders that
    also contain B.
    """

    name = "product_affinity"
    required_tables = {
        'order_items': ['order_id', 'product_id'],
        'products': ['product_id', 'product_name'],
    }

    def product_pairs(self, order_items: pd.DataFrame) -> pd.DataFrame:
        """Every unordered pair of distinct products sharing an order, with counts"""
        baskets = order_items[['order_id', 'product_id']].dropna().drop_duplicates()

        pairs = baskets.merge(baskets, on='order_id', suffixes=('_a', '_b'))
        pairs = pairs[pairs['product_id_a'] < pairs['product_id_b']]

        together = pairs.groupby(['product_id_a', 'product_id_b']).agg(
            times_bought_together=('order_id', 'nunique'),
        ).reset_index()

        popularity = baskets.groupby('product_id')['order_id'].nunique()
        together['product_a_orders'] = together['product_id_a'].map(popularity)
        together['product_b_orders'] = together['product_id_b'].map(popularity)
        return together

    def build(self, tables: Dict[str, pd.DataFrame], top_n: int = None, **kwargs) -> pd.DataFrame:
        columns = ['product_a_name', 'product_b_name', 'times_bought_together',
                   'product_a_affinity_pct', 'product_b_affinity_pct', 'affinity_level']
        pairs = self.product_pairs(tables['order_items'])
        if pairs.empty:
            return pd.DataFrame(columns=columns)

        names = tables['products'].drop_duplicates('product_id').set_index('product_id')['product_name']
        pairs['product_a_name'] = pairs['product_id_a'].map(names)
        pairs['product_b_name'] = pairs['product_id_b'].map(names)
        # pairs whose products are missing from the catalogue are dropped
        pairs = pairs.dropna(subset=['product_a_name', 'product_b_name'])

        pairs['product_a_affinity_pct'] = percentage(pairs['times_bought_together'], pairs['product_a_orders'])
        pairs['product_b_affinity_pct'] = percentage(pairs['times_bought_together'], pairs['product_b_orders'])

        high = self.settings.affinity_high_pct
        medium = self.settings.affinity_medium_pct
        pairs['affinity_level'] = np.select(
            [
                (pairs['product_a_affinity_pct'] > high) | (pairs['product_b_affinity_pct'] > high),
                (pairs['product_a_affinity_pct'] > medium) | (pairs['product_b_affinity_pct'] > medium),
            ],
            ['High Affinity', 'Medium Affinity'],
            default='Low Affinity',
        )

        pairs = pairs.sort_values(
            ['times_bought_together', 'product_a_affinity_pct', 'product_id_a', 'product_id_b'],
            ascending=[False, False, True, True],
        )
        return pairs[columns].head(top_n or self.settings.affinity_top_n).reset_index(drop=True)
