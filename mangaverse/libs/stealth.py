from playwright.async_api import BrowserContext, Page

# Init scripts run before any page script, masking the usual headless tells
HIDE_WEBDRIVER = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
"""

FAKE_CHROME_RUNTIME = """
    window.chrome = window.chrome || { runtime: {} };
"""

FAKE_LANGUAGES = """
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en', 'vi'] });
"""

FAKE_PLUGINS = """
    Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3] });
"""

# 37445 = UNMASKED_VENDOR_WEBGL, 37446 = UNMASKED_RENDERER_WEBGL
WEBGL_VENDOR = """
    const getParameter = WebGLRenderingContext.prototype.getParameter;
    WebGLRenderingContext.prototype.getParameter = function (parameter) {
        if (parameter === 37445) return 'Google Inc. (Intel)';
        if (parameter === 37446) return 'ANGLE (Intel, Intel(R) UHD Graphics 620, OpenGL 4.1)';
        return getParameter.call(this, parameter);
    };
"""

STEALTH_SCRIPTS = [
    HIDE_WEBDRIVER,
    FAKE_CHROME_RUNTIME,
    FAKE_LANGUAGES,
    FAKE_PLUGINS,
    WEBGL_VENDOR,
]


async def apply_stealth(target: BrowserContext | Page):
    """Registers the evasion scripts on a context (all its pages) or a single page."""
    for script in STEALTH_SCRIPTS:
        await target.add_init_script(script)
