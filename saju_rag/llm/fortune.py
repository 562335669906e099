"""
Structured Saju readings.

A reading request carries the chart (사주원국) instead of a free-form
prompt. The chart is rendered into an expert prompt that asks for a JSON
object with five fields; the reply is parsed back out of the model text,
and a fixed default reading stands in when the model did not produce
parseable JSON.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


READING_FIELDS = ("운세", "재물운", "건강운", "애정운", "종합_조언")

FORTUNE_SYSTEM_PROMPT = (
    "당신은 30년 경력의 전문 사주명리학자입니다. "
    "정확한 사주명리학 지식을 바탕으로 JSON 형식으로 한국어 응답만 제공하세요."
)

READING_MAX_TOKENS = 1000
READING_TEMPERATURE = 0.3

READING_INSTRUCTIONS = """**분석 시 중점 사항:**
- 지장간을 통한 숨겨진 기운과 잠재력 해석
- 십이운성으로 각 기둥의 생명력 상태와 흐름 파악
- 형충파해 관계를 통한 길흉과 변화 시기 판단
- 신살과 십이신살의 복합적 영향
- 대운과 현재 사주의 상호작용 및 시기별 운세
- 납음오행을 통한 추가적 성격과 운명 분석

위 정보를 종합하여 항목별로 해석해 주세요:
1. 전반적 운세: 일간과 십성, 오행 균형, 신강약을 고려한 전체 운세
2. 재물운: 재성과 식상의 관계, 오행 흐름에 따른 재물운
3. 건강운: 일간의 강약과 오행 편중을 고려한 건강 상태
4. 애정운: 관성과 재성의 배치, 신살을 고려한 인간관계
5. 종합 조언: 신강약과 용신을 고려한 실용적 조언

응답은 반드시 다음 JSON 형식으로 제공해주세요.
{
  "운세": "전체 운세 (3-4문장)",
  "재물운": "재물운 분석 (3-4문장)",
  "건강운": "건강 관리법 (3-4문장)",
  "애정운": "인간관계 조언 (3-4문장)",
  "종합_조언": "실용적 조언 (4-5문장)"
}

- 전문 용어를 활용하되 이해하기 쉽게 설명
- 구체적이고 실용적인 조언 포함
- 긍정적이면서도 현실적인 해석 제공"""

DEFAULT_READING: Dict[str, str] = {
    "운세": (
        "현재 시스템 점검 중으로 상세한 명리학적 분석을 제공할 수 없습니다. "
        "일간의 기본 특성을 고려할 때 꾸준한 노력이 결실을 맺을 시기입니다."
    ),
    "재물운": "현재 재성의 흐름이 안정적이나 무리한 투자보다는 기존 자산의 관리에 집중하시기 바랍니다.",
    "건강운": "오행의 균형을 고려할 때 규칙적인 생활 리듬과 적절한 운동을 통해 건강을 유지하시기 바랍니다.",
    "애정운": "인간관계에서 진실함과 포용력을 발휘하시면 좋은 결과가 있을 것입니다.",
    "종합_조언": (
        "현재 신강약 상태를 고려할 때 차분하고 신중한 접근이 필요합니다. "
        "급하게 변화를 추구하기보다는 단계적인 발전을 도모하시기 바랍니다."
    ),
}

_FENCED_JSON = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)
_BARE_OBJECT = re.compile(r"(\{.*\})", re.DOTALL)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _hanja(items: Optional[Iterable[Any]]) -> str:
    """Join the 한자 of each 공망 branch."""
    if not items:
        return ""
    return "".join(
        str(item.get("한자", "")) if isinstance(item, dict) else str(item)
        for item in items
    )


def build_fortune_prompt(chart: Dict[str, Any]) -> str:
    """
    Render a chart into the reading prompt.

    Expected shape (missing parts render empty):
        {"사주": ..., "정보": {"생년월일": ..., "공망": {"일주공망": [...], "년주공망": [...]},
                              "오행": {"오행별비중": {...}}, "삼재": {...}}}
    """
    info = chart.get("정보") or {}
    gongmang = info.get("공망") or {}
    ratios = (info.get("오행") or {}).get("오행별비중") or {}
    samjae = info.get("삼재") or {}

    lines = [
        "당신은 30년 경력의 전문 사주명리학자입니다.",
        "다음의 상세한 사주 정보를 바탕으로 정확하고 전문적인 운세를 풀이해 주세요.",
        "",
        "=== 사주명리학 해석 가이드라인 ===",
        "- 오행 편중: 25% 이상이면 강함, 15% 이하면 약함으로 판단",
        "",
        "=== 생년월일 정보 ===",
        _as_text(info.get("생년월일")),
        "",
        "=== 사주 정보 ===",
        _as_text(chart.get("사주")),
        "",
        "=== 공망 정보 ===",
        f"일주공망({_hanja(gongmang.get('일주공망'))})",
        f"년주공망({_hanja(gongmang.get('년주공망'))})",
        "",
        "=== 오행 비중 ===",
        " ".join(f"{element}:{ratio}" for element, ratio in ratios.items()),
        "",
        "=== 삼재 정보 ===",
        " ".join(f"{kind}:{_as_text(samjae.get(kind))}" for kind in ("들삼재", "눌삼재", "날삼재")),
        "",
        READING_INSTRUCTIONS,
    ]
    return "\n".join(lines)


def extract_reading(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Pull the JSON reading out of a model reply.

    Looks for a ```json fenced block first, then the outermost ``{...}``,
    then tries the whole text. Returns None when nothing parses to an object.
    """
    if not text:
        return None
    match = _FENCED_JSON.search(text) or _BARE_OBJECT.search(text)
    candidate = match.group(1) if match else text
    try:
        parsed = json.loads(candidate)
    except ValueError as e:
        logger.warning(f"⚠️ Reading is not valid JSON: {e}")
        return None
    return parsed if isinstance(parsed, dict) else None
