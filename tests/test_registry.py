import unittest

import httpx

from skilldeck.errors import RegistryDecodeError, RegistryError, RegistryHTTPError, SkillContentNotFoundError
from skilldeck.registry import CONTENT_TTL_S, RAW_BASE_URL, RegistryClient, RegistrySkill, candidate_urls

SKILL_MD = "---\nname: pdf\ndescription: Read PDFs\n---\n# PDF\n"


def _client(handler, **kwargs) -> RegistryClient:
    return RegistryClient(
        base_url="https://skills.example.com/",
        http=httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True),
        **kwargs,
    )


class TestRegistrySkill(unittest.TestCase):
    def test_formatted_installs(self) -> None:
        def make(n: int) -> RegistrySkill:
            return RegistrySkill(id="a/b/c", skill_id="c", name="c", installs=n, source="a/b")

        self.assertEqual(make(999).formatted_installs, "999")
        self.assertEqual(make(1_500).formatted_installs, "1.5K")
        self.assertEqual(make(2_300_000).formatted_installs, "2.3M")
        self.assertEqual(make(1).repo_url, "https://github.com/a/b")

    def test_from_dict_defaults_id(self) -> None:
        skill = RegistrySkill.from_dict({"skillId": "pdf", "name": "pdf", "installs": 3, "source": "acme/skills"})
        self.assertEqual(skill.id, "acme/skills/pdf")
        self.assertIsNone(skill.change)

    def test_from_dict_rejects_bad_shapes(self) -> None:
        with self.assertRaises(RegistryDecodeError):
            RegistrySkill.from_dict({"skillId": "pdf", "name": "pdf", "source": "acme/skills"})
        with self.assertRaises(RegistryDecodeError):
            RegistrySkill.from_dict({"skillId": "pdf", "name": "pdf", "installs": "many", "source": "acme/skills"})


class TestSearch(unittest.TestCase):
    def test_search_decodes_results(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "skills": [
                        {
                            "id": "acme/skills/pdf",
                            "skillId": "pdf",
                            "name": "pdf",
                            "installs": 1200,
                            "source": "acme/skills",
                            "installsYesterday": 10,
                            "change": 2,
                        }
                    ]
                },
            )

        with _client(handler) as client:
            results = client.search("pdf", limit=5)

        self.assertEqual(seen[0].url.path, "/api/search")
        self.assertEqual(seen[0].url.params["q"], "pdf")
        self.assertEqual(seen[0].url.params["limit"], "5")
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].installs_yesterday, 10)
        self.assertEqual(results[0].formatted_installs, "1.2K")

    def test_http_error(self) -> None:
        with _client(lambda request: httpx.Response(503, text="maintenance")) as client:
            with self.assertRaises(RegistryHTTPError) as ctx:
                client.search("pdf")
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(ctx.exception.body, "maintenance")

    def test_undecodable_body(self) -> None:
        with _client(lambda request: httpx.Response(200, text="<html>")) as client:
            with self.assertRaises(RegistryDecodeError):
                client.search("pdf")
        with _client(lambda request: httpx.Response(200, json={"results": []})) as client:
            with self.assertRaises(RegistryDecodeError):
                client.search("pdf")

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        with _client(handler) as client:
            with self.assertRaises(RegistryError):
                client.search("pdf")


class TestFetchSkillContent(unittest.TestCase):
    def test_falls_through_missing_candidates(self) -> None:
        urls = candidate_urls("acme/skills", "pdf")
        hit = urls[1]
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            if str(request.url) == hit:
                return httpx.Response(200, text=SKILL_MD)
            return httpx.Response(404)

        with _client(handler) as client:
            self.assertEqual(client.fetch_skill_content("acme/skills", "pdf"), SKILL_MD)
        self.assertEqual(seen, urls[:2])
        self.assertEqual(hit, f"{RAW_BASE_URL}/acme/skills/main/skills/pdf/SKILL.md")

    def test_ttl_cache(self) -> None:
        now = [1000.0]
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            return httpx.Response(200, text=SKILL_MD)

        with _client(handler, clock=lambda: now[0]) as client:
            client.fetch_skill_content("acme/skills", "pdf")
            now[0] += CONTENT_TTL_S - 1
            client.fetch_skill_content("acme/skills", "pdf")
            self.assertEqual(len(calls), 1)
            now[0] += 2
            client.fetch_skill_content("acme/skills", "pdf")
            self.assertEqual(len(calls), 2)
            client.clear_cache()
            client.fetch_skill_content("acme/skills", "pdf")
            self.assertEqual(len(calls), 3)

    def test_discovers_renamed_folder(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            url = str(request.url)
            if request.url.host == "api.github.com":
                if request.url.path == "/repos/acme/skills/contents/skills" and request.url.params["ref"] == "main":
                    return httpx.Response(
                        200,
                        json=[
                            {"name": "README.md", "type": "file"},
                            {"name": "other", "type": "dir"},
                            {"name": "pdf-tools", "type": "dir"},
                        ],
                    )
                return httpx.Response(404)
            if url.endswith("/main/skills/other/SKILL.md"):
                return httpx.Response(200, text="---\nname: other\n---\n")
            if url.endswith("/main/skills/pdf-tools/SKILL.md"):
                return httpx.Response(200, text=SKILL_MD)
            return httpx.Response(404)

        with _client(handler) as client:
            self.assertEqual(client.fetch_skill_content("acme/skills", "pdf"), SKILL_MD)

    def test_not_found(self) -> None:
        with _client(lambda request: httpx.Response(404)) as client:
            with self.assertRaises(SkillContentNotFoundError):
                client.fetch_skill_content("acme/skills", "pdf")

    def test_server_error_is_not_treated_as_missing(self) -> None:
        with _client(lambda request: httpx.Response(500, text="oops")) as client:
            with self.assertRaises(RegistryHTTPError):
                client.fetch_skill_content("acme/skills", "pdf")

    def test_non_utf8_body(self) -> None:
        with _client(lambda request: httpx.Response(200, content=b"\xff\xfe\xfa")) as client:
            with self.assertRaises(RegistryDecodeError):
                client.fetch_skill_content("acme/skills", "pdf")


if __name__ == "__main__":
    unittest.main()
