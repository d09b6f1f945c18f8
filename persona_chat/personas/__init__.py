"""人设目录加载。

人设元数据来自 catalog.yaml，system prompt 按 prompt 字段从 prompts/ 目录读取。
进程启动时加载一次，运行期间只读。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml

from persona_chat.domain.exceptions import PersonaNotFound


PERSONAS_DIR = Path(__file__).resolve().parent
CATALOG_PATH = PERSONAS_DIR / "catalog.yaml"


@dataclass(frozen=True)
class Persona:
    id: str
    name: str
    avatar: str
    system_prompt: str
    description: str = ""
    featured: bool = False
    filter_tags: Tuple[str, ...] = field(default_factory=tuple)

    def summary(self, online: bool = True) -> Dict[str, Any]:
        """列表接口使用的精简字段（不含 system prompt）。"""

        return {
            "id": self.id,
            "name": self.name,
            "profileImage": self.avatar,
            "description": self.description or f"Chat with {self.name}",
            "isOnline": online,
            "isFeatured": self.featured,
            "filterTags": list(self.filter_tags),
        }

    def detail(self, online: bool = True) -> Dict[str, Any]:
        data = self.summary(online)
        data["systemPrompt"] = self.system_prompt
        return data


class PersonaRegistry:
    """按 ID 查找人设的只读集合，保持目录中的顺序。"""

    def __init__(self, personas: List[Persona]):
        self._personas: Dict[str, Persona] = {p.id: p for p in personas}

    @classmethod
    def from_catalog(cls, path: Optional[Path] = None) -> "PersonaRegistry":
        catalog = Path(path or CATALOG_PATH)
        data = yaml.safe_load(catalog.read_text(encoding="utf-8")) or {}
        prompts_dir = catalog.parent / "prompts"
        personas = [cls._build(entry, prompts_dir) for entry in data.get("personas") or []]
        return cls(personas)

    @staticmethod
    def _build(entry: Mapping[str, Any], prompts_dir: Path) -> Persona:
        prompt = entry.get("system_prompt")
        if prompt is None:
            prompt = (prompts_dir / entry["prompt"]).read_text(encoding="utf-8")
        return Persona(
            id=str(entry["id"]),
            name=str(entry["name"]),
            avatar=str(entry.get("avatar") or ""),
            system_prompt=prompt.strip(),
            description=str(entry.get("description") or ""),
            featured=bool(entry.get("featured", False)),
            filter_tags=tuple(entry.get("filter_tags") or ()),
        )

    def ids(self) -> List[str]:
        return list(self._personas)

    def __contains__(self, persona_id: object) -> bool:
        return persona_id in self._personas

    def __iter__(self) -> Iterator[Persona]:
        return iter(self._personas.values())

    def __len__(self) -> int:
        return len(self._personas)

    def get(self, persona_id: str) -> Persona:
        try:
            return self._personas[persona_id]
        except KeyError:
            raise PersonaNotFound(persona_id, self.ids()) from None
