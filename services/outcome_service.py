"""
獎項選擇服務：依權重隨機抽出一個獎項

純計算 + 唯讀查詢，不寫入資料庫（呼叫者負責把結果寫進 session）
"""
import random
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import (
    InstanceGameLimitReached,
    NoEligibleOutcomes,
    NoOutcomesAvailable,
    ZeroTotalWeight,
)
from database import get_settings
from models import GameSession, Outcome

_system_random = random.SystemRandom()


def stable_order(outcomes: Sequence[Outcome]) -> List[Outcome]:
    """權重由大到小，同權重依 id 排序；同一組設定每次都得到相同順序"""
    return sorted(outcomes, key=lambda o: (-o.probability_weight, str(o.id)))


def pick_weighted(outcomes: Sequence[Outcome], rng: Optional[random.Random] = None) -> Outcome:
    """
    從候選獎項中依權重抽一個

    做法：
    - r 在 [0, total) 均勻分布
    - 依 stable_order 累加權重，r 落在哪個區間就選哪個

    參數：
        outcomes: 候選獎項（權重 0 的會被忽略）
        rng: 可注入固定 seed 的 random.Random，方便測試

    異常：
        NoEligibleOutcomes: 沒有權重 > 0 的獎項
        ZeroTotalWeight: 權重總和為 0
    """
    eligible = stable_order([o for o in outcomes if o.probability_weight > 0])
    if not eligible:
        raise NoEligibleOutcomes(
            "No eligible outcomes available (all weights are 0 or limits reached)"
        )

    total = sum(o.probability_weight for o in eligible)
    if total == 0:
        raise ZeroTotalWeight("Total weight is zero")

    r = (rng or _system_random).random() * total
    cumulative = 0
    for outcome in eligible:
        cumulative += outcome.probability_weight
        if r < cumulative:
            return outcome

    # 浮點誤差時落在最後一段
    return eligible[-1]


def get_occurrence_counts(display_id: str, db: Session) -> Dict[str, int]:
    rows = (
        db.query(GameSession.outcome_id, func.count(GameSession.id))
        .filter(GameSession.display_id == display_id)
        .group_by(GameSession.outcome_id)
        .all()
    )
    return {outcome_id: count for outcome_id, count in rows if outcome_id is not None}


def select_outcome(display_id: str, db: Session, rng: Optional[random.Random] = None) -> Outcome:
    """
    為 display 選出本次遊戲的獎項

    流程：
    1. 總遊戲次數上限（max_games_per_instance > 0 才檢查）
    2. 取出啟用中的獎項
    3. 排除已達出現上限的獎項（max_outcome_occurrences > 0 才檢查）
    4. 依權重抽選

    異常：
        InstanceGameLimitReached, NoOutcomesAvailable, NoEligibleOutcomes, ZeroTotalWeight
    """
    settings = get_settings()

    if settings.max_games_per_instance > 0:
        total_games = db.query(GameSession).filter(GameSession.display_id == display_id).count()
        if total_games >= settings.max_games_per_instance:
            raise InstanceGameLimitReached(
                f"Maximum number of games reached for display {display_id}"
            )

    outcomes = db.query(Outcome).filter(
        Outcome.display_id == display_id,
        Outcome.is_active == True
    ).all()
    if not outcomes:
        raise NoOutcomesAvailable(f"No active outcomes found for display {display_id}")

    if settings.max_outcome_occurrences > 0:
        counts = get_occurrence_counts(display_id, db)
        outcomes = [
            o for o in outcomes
            if counts.get(o.id, 0) < settings.max_outcome_occurrences
        ]

    return pick_weighted(outcomes, rng)
