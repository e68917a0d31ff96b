"""Example taskfile for a TypeScript/SCSS front end with a PHP API.

Run it from the project root with::

    taskgraph --taskfile examples/taskfile.py list
    taskgraph --taskfile examples/taskfile.py run
    taskgraph --taskfile examples/taskfile.py watch
    taskgraph --taskfile examples/taskfile.py watch --set tests

External tools (tsc, sass, mocha, phpunit, ...) are expected on PATH or in
node_modules/.bin.
"""

from __future__ import annotations

import os
from pathlib import Path

from task_graph_runner import (
    ActionResult,
    TaskGraph,
    WatchRegistry,
    copy_files,
    remove_paths,
    shell,
)

TS = "src/app/**/*.ts"
HTML = ["src/**/*.html", "src/.htaccess"]
JSON = "src/json/**/*.json"
IMAGES = "src/images/**/*.*"
SCSS = "src/scss/**/*.scss"
SCSS_MAIN = "src/scss/main.scss"
API = ["src/api/**/*.*", "src/api/.htaccess", "!src/api/composer.*"]
TESTS_APP = "test/app/**/*.spec.js"

BIN = Path("node_modules/.bin")

VENDOR_JS = [
    "node_modules/core-js/client/shim.js",
    "node_modules/zone.js/dist/zone.js",
    "node_modules/reflect-metadata/Reflect.js",
    "node_modules/chartist/dist/chartist.js",
    "node_modules/chartist-plugin-tooltip/dist/chartist-plugin-tooltip.js",
]
VENDOR_MAP = "node_modules/reflect-metadata/Reflect.js.map"


def bundle_vendor() -> ActionResult:
    """Copy the Reflect source map and concatenate scripts into dist/js/vendor.js."""

    out = Path("dist/js/vendor.js")
    out.parent.mkdir(parents=True, exist_ok=True)
    copy_files(VENDOR_MAP, "dist/js")()
    missing = [src for src in VENDOR_JS if not Path(src).is_file()]
    if missing:
        return ActionResult(ok=False, message=f"Missing vendor scripts: {', '.join(missing)}")
    out.write_text(
        "\n".join(Path(src).read_text(encoding="utf-8") for src in VENDOR_JS),
        encoding="utf-8",
    )
    return ActionResult(ok=True, details={"files": len(VENDOR_JS)})


compile_typescript = shell(f"{BIN / 'tsc'} --project tsconfig.json --outDir build")


async def tsc() -> None:
    """Compile TypeScript into a fresh build/ directory."""

    remove_paths("build")()
    await compile_typescript()


def reset_test_db() -> None:
    Path("tests.log").unlink(missing_ok=True)
    db = Path("tests.db")
    db.unlink(missing_ok=True)
    db.touch()
    os.chmod(db, 0o666)


def open_api_dir() -> None:
    os.chmod("dist/api", 0o777)


def configure(graph: TaskGraph, watches: WatchRegistry) -> None:
    graph.register(
        "clean",
        action=remove_paths("dist", "build", "tests.db", "coverage", "src/api/vendor"),
        description="Delete build output",
    )

    graph.register("html", action=copy_files(HTML, "dist"))
    graph.register("json", action=copy_files(JSON, "dist/strings"))
    graph.register("fonts", action=copy_files("src/fonts/fontello.*", "dist/css/fonts"))
    graph.register("images", action=shell(f"{BIN / 'imagemin'} src/images --out-dir=dist/images"))
    graph.register("api", action=copy_files(API, "dist/api"))
    graph.register("composer", action=shell("composer install", cwd="src/api"))

    graph.register("scss-lint", action=shell(f"scss-lint {SCSS}"))
    graph.register(
        "scss",
        action=shell(f"{BIN / 'sass'} --no-source-map {SCSS_MAIN} dist/css/styles.css"),
    )

    graph.register("ts-lint", action=shell(f"{BIN / 'tslint'} --format prose '{TS}'"))
    graph.register("tsc", action=tsc)
    graph.register("vendor", action=bundle_vendor)
    graph.register(
        "system-build",
        ["tsc"],
        action=shell("node system.build.js && rm -rf build"),
        description="Bundle the compiled app into dist/js/bundle.js",
    )

    graph.register("minify-js", action=shell(f"{BIN / 'uglifyjs'} dist/js/bundle.js -o dist/js/bundle.js"))
    graph.register(
        "minify-css", action=shell(f"{BIN / 'cssnano'} dist/css/styles.css dist/css/styles.css")
    )
    graph.register("minify", ["minify-js", "minify-css"])

    graph.register("app", ["html", "json", "system-build", "ts-lint"])
    graph.register("styles", ["html", "scss-lint", "scss"])

    graph.register(
        "test-app",
        ["tsc"],
        action=shell(f"{BIN / 'mocha'} --require ./test/app/mocks.js '{TESTS_APP}'"),
    )
    graph.register("coverage-prep", ["tsc"])
    graph.register(
        "coverage",
        ["coverage-prep"],
        action=shell(
            f"{BIN / 'nyc'} --reporter=html --report-dir=coverage/app "
            f"{BIN / 'mocha'} --require ./test/app/mocks.js '{TESTS_APP}'"
        ),
    )
    graph.register("api-test-db", action=reset_test_db)
    graph.register(
        "test-api",
        ["api-test-db"],
        action=shell("./src/api/vendor/phpunit/phpunit/phpunit -c test/api/phpunit.xml"),
    )
    graph.register(
        "test-api-single",
        ["api-test-db"],
        action=shell(
            "./src/api/vendor/phpunit/phpunit/phpunit -c test/api/phpunit.xml --group single"
        ),
    )
    graph.register("test", ["coverage", "test-api"])

    graph.register(
        "default",
        [
            "vendor",
            "ts-lint",
            "system-build",
            "html",
            "json",
            "images",
            "scss-lint",
            "fonts",
            "scss",
            "api",
        ],
        action=open_api_dir,
        description="Full build",
    )

    watches.add(TS, ["system-build"])
    watches.add(SCSS, ["scss-lint", "scss"])
    watches.add(HTML, ["html"])
    watches.add(IMAGES, ["images"])
    watches.add(API, ["api"])

    watches.add(TESTS_APP, ["test-app"], watch_set="tests")
    watches.add(TS, ["test-app"], watch_set="tests")
