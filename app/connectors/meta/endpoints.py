"""ADSYNC — Meta API Endpoints.

Fetch functions for each Meta Marketing API resource the sync needs:
campaign / ad set / ad structure, ad-level daily insights, and creative
details resolved through batch requests.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from app.config import settings
from app.connectors.meta.client import MetaClient
from app.connectors.meta.transformer import (
    transform_ad,
    transform_adset,
    transform_campaign,
    transform_insights,
)
from app.models.entity_models import EntityRecord
from app.models.metric_models import DailyInsight
from app.core.logging import get_logger

logger = get_logger("meta.endpoints")

INSIGHT_FIELDS = (
    "campaign_id,campaign_name,adset_id,adset_name,ad_id,ad_name,"
    "spend,impressions,clicks,reach,frequency,results,action_values"
)
CAMPAIGN_FIELDS = (
    "id,name,status,effective_status,objective,daily_budget,lifetime_budget,"
    "created_time,updated_time"
)
ADSET_FIELDS = "id,name,status,campaign_id,daily_budget,lifetime_budget"
AD_FIELDS = "id,name,status,adset_id,campaign_id,creative{id,thumbnail_url,image_url}"
CREATIVE_FIELDS = "id,thumbnail_url,image_url,video_id,object_story_spec"
VIDEO_FIELDS = "id,source,picture"

NON_DELETED_FILTER = json.dumps(
    [{"field": "effective_status", "operator": "NOT_IN", "value": ["DELETED"]}]
)


class MetaEndpoints:
    """Fetch and normalize data from Meta for one ad account."""

    def __init__(self, client: MetaClient):
        self.client = client
        self.ad_account_id = client.ad_account_id
        self.base_url = client.base_url

    # ── Structure Endpoints (Campaigns, Adsets, Ads) ──

    async def _fetch_structure(self, edge: str, fields: str) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/{self.ad_account_id}/{edge}"
        params = {
            "fields": fields,
            "filtering": NON_DELETED_FILTER,
            "limit": settings.page_size,
        }
        return await self.client._paginated_get(url, params)

    async def fetch_campaigns(self) -> List[EntityRecord]:
        """Fetch every non-deleted campaign."""
        data = await self._fetch_structure("campaigns", CAMPAIGN_FIELDS)
        return [transform_campaign(c) for c in data]

    async def fetch_adsets(self) -> List[EntityRecord]:
        """Fetch every non-deleted ad set."""
        data = await self._fetch_structure("adsets", ADSET_FIELDS)
        return [transform_adset(a) for a in data]

    async def fetch_ads(self) -> List[EntityRecord]:
        """Fetch every non-deleted ad with its creative thumbnail."""
        data = await self._fetch_structure("ads", AD_FIELDS)
        return [transform_ad(a) for a in data]

    # ── Ad-Level Daily Insights ──

    async def fetch_ad_insights(
        self,
        date_start: Optional[str] = None,
        date_stop: Optional[str] = None,
        date_preset: Optional[str] = None,
    ) -> Dict[str, Dict[str, DailyInsight]]:
        """Fetch day-granularity ad insights.

        Returns {ad_id: {date: DailyInsight}}.
        """
        url = f"{self.base_url}/{self.ad_account_id}/insights"
        params: Dict[str, Any] = {
            "fields": INSIGHT_FIELDS,
            "level": "ad",
            "time_increment": "1",
            "limit": settings.page_size,
        }
        if date_start and date_stop:
            params["time_range"] = json.dumps({"since": date_start, "until": date_stop})
        else:
            params["date_preset"] = date_preset or "last_30d"

        data = await self.client._paginated_get(url, params)
        insights = transform_insights(data)
        logger.info(f"Fetched {len(data)} ad insight rows for {len(insights)} ads")
        return insights

    # ── Creatives ──

    async def fetch_creative_details(
        self, creative_ids: Sequence[str]
    ) -> Dict[str, Dict[str, Optional[str]]]:
        """Resolve creative images and video thumbnails via batch requests.

        Creatives that fail to resolve are left out of the result.
        """
        ids = sorted({c for c in creative_ids if c})
        if not ids:
            return {}

        creatives = await self.client.batch_request(
            [f"{cid}?fields={CREATIVE_FIELDS}" for cid in ids]
        )
        details: Dict[str, Dict[str, Optional[str]]] = {}
        video_ids: Dict[str, str] = {}
        for cid, body in zip(ids, creatives):
            if not body:
                continue
            video_id = body.get("video_id") or (
                (body.get("object_story_spec") or {}).get("video_data") or {}
            ).get("video_id")
            details[cid] = {
                "thumbnail_url": body.get("thumbnail_url"),
                "image_url": body.get("image_url") or body.get("thumbnail_url"),
                "video_url": None,
            }
            if video_id:
                video_ids[cid] = str(video_id)

        if video_ids:
            cids = list(video_ids)
            videos = await self.client.batch_request(
                [f"{video_ids[cid]}?fields={VIDEO_FIELDS}" for cid in cids]
            )
            for cid, body in zip(cids, videos):
                if not body:
                    continue
                details[cid]["video_url"] = body.get("source")
                if body.get("picture") and not details[cid]["image_url"]:
                    details[cid]["image_url"] = body["picture"]

        logger.info(f"Resolved {len(details)}/{len(ids)} creatives")
        return details
