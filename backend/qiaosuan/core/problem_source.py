# backend/qiaosuan/core/problem_source.py

import os, json, logging, re
from typing import Any, Dict, List, Tuple
from openai import AsyncOpenAI
from pydantic import TypeAdapter
from dotenv import load_dotenv

from .schemas import Problem

# ------------------------------------------------------------
# Ensure environment is loaded early
# ------------------------------------------------------------
load_dotenv()
logger = logging.getLogger("quiz.source")

PROBLEMS_PER_SESSION = 10
DEFAULT_MODEL = "gpt-4o-mini"

# ------------------------------------------------------------
# Global OpenAI client (async)
# ------------------------------------------------------------
_client: AsyncOpenAI | None = None

def configure_openai(api_key: str | None = None) -> AsyncOpenAI:
    """Create or reuse an AsyncOpenAI client."""
    global _client
    if _client is None:
        key = api_key or os.getenv("OPENAI_API_KEY", "")
        if not key:
            raise RuntimeError("OPENAI_API_KEY missing. Provide via env or param.")
        _client = AsyncOpenAI(api_key=key)
        logger.info("OpenAI async client configured (global instance).")
    return _client

# ------------------------------------------------------------
# Prompt, system instruction & output schema
# ------------------------------------------------------------
QG_PROMPT = (
    "你是中国小学四年级的数学老师，专门负责训练学生的\"巧算\"（简便运算）能力。\n"
    "请生成{n}道适合四年级水平的巧算数学题。\n\n"
    "要求涵盖以下类型：\n"
    "1. 加法交换律和结合律 (凑整，如 134 + 258 + 66)\n"
    "2. 减法的性质 (如 452 - 198, 或 500 - 123 - 77)\n"
    "3. 乘法结合律 (找朋友，如 25 x 13 x 4, 125 x 7 x 8)\n"
    "4. 乘法分配律及其逆运算 (如 24 x 101, 37 x 99 + 37, 68 x 101 - 68)\n"
    "5. 除法的性质 (如 3600 ÷ 25 ÷ 4)\n\n"
    "难度要求：\n"
    "- 数字不要太大，重点在于考察能否看出简便方法。\n"
    "- 确保答案是整数。\n\n"
    "请严格按照JSON格式返回，包含{n}个对象。"
)

QG_SYSTEM_INSTRUCTION = "你是一位亲切、鼓励型的小学数学老师。所有的讲解都要通俗易懂。"

# Strict structured outputs need an object at the root, so the array is wrapped.
PROBLEM_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "problems": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "question": {"type": "string", "description": "数学题目表达式，例如 '25 x 44'"},
                    "answer": {"type": "number", "description": "题目的正确数字答案"},
                    "explanation": {"type": "string", "description": "详细的巧算思路讲解，分步骤说明如何简便计算"},
                    "type": {"type": "string", "description": "考察的知识点，例如'乘法分配律'"},
                },
                "required": ["question", "answer", "explanation", "type"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["problems"],
    "additionalProperties": False,
}

# Used when the model call fails for any reason.
FALLBACK_PROBLEMS: Tuple[Problem, ...] = (
    Problem(
        question="25 × 44",
        answer=1100,
        explanation="把44拆分成4×11，然后25×4=100，100×11=1100",
        category="乘法结合律",
    ),
    Problem(
        question="135 + 289 + 65",
        answer=489,
        explanation="利用加法交换律，先算135+65=200，再加289等于489",
        category="加法凑整",
    ),
    Problem(
        question="47 × 99 + 47",
        answer=4700,
        explanation="提取公因数47，变成 47 × (99 + 1) = 47 × 100",
        category="乘法分配律",
    ),
)

_problem_list = TypeAdapter(List[Problem])

# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def _parse_json_response(text: str) -> List[Dict[str, Any]]:
    if not text:
        raise ValueError("Empty response from model")

    try:
        data = json.loads(text)
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("problems"), list):
            return data["problems"]
    except json.JSONDecodeError:
        pass

    start, end = text.find("["), text.rfind("]")
    if start != -1 and end != -1:
        snippet = text[start:end+1]
        try:
            data = json.loads(snippet)
            if isinstance(data, list):
                return data
        except json.JSONDecodeError:
            pass

    cleaned = re.sub(r",\s*([}\]])", r"\1", text)
    try:
        data = json.loads(cleaned)
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("problems"), list):
            return data["problems"]
    except json.JSONDecodeError as e:
        logger.error(f"Failed after cleaning JSON: {e}")

    raise ValueError(f"Invalid JSON from model. Raw output: {text[:500]}...")

def _to_problems(items: List[Dict[str, Any]], n: int) -> List[Problem]:
    problems = _problem_list.validate_python(items)
    if not problems:
        raise ValueError("Model returned no problems")
    if len(problems) > n:
        problems = problems[:n]
    return problems

# ------------------------------------------------------------
# Main generator
# ------------------------------------------------------------
async def request_problems(
    n: int = PROBLEMS_PER_SESSION,
    model_name: str | None = None,
    api_key: str | None = None,
) -> List[Problem]:
    """Ask the model for `n` problems. Raises on any failure."""
    client = configure_openai(api_key)
    model_name = model_name or os.getenv("QUIZ_MODEL", DEFAULT_MODEL)

    resp = await client.chat.completions.create(
        model=model_name,
        messages=[
            {"role": "system", "content": QG_SYSTEM_INSTRUCTION},
            {"role": "user", "content": QG_PROMPT.format(n=n)},
        ],
        response_format={
            "type": "json_schema",
            "json_schema": {"name": "math_problems", "strict": True, "schema": PROBLEM_SCHEMA},
        },
    )
    raw = resp.choices[0].message.content or ""
    return _to_problems(_parse_json_response(raw), n)

async def fetch_problems_with_origin(
    n: int = PROBLEMS_PER_SESSION,
) -> Tuple[List[Problem], bool]:
    """
    Return (problems, used_fallback).
    Never raises: any failure is logged and the fallback set is returned.
    """
    try:
        problems = await request_problems(n)
    except Exception as e:
        logger.error(f"Error generating problems: {e}", exc_info=True)
        return list(FALLBACK_PROBLEMS), True

    logger.info(f"Generated {len(problems)} problems successfully.")
    return problems, False

async def fetch_problems(n: int = PROBLEMS_PER_SESSION) -> List[Problem]:
    problems, _ = await fetch_problems_with_origin(n)
    return problems
