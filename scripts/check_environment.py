# scripts/check_environment.py
import sys
from pathlib import Path
from dotenv import dotenv_values

REQUIRED_VARS = [
    "SHOP_ID",
    "CLOUD_URL",
    "CLOUD_API_KEY",
]

# Без них POS импорт и вебхуки отключаются
OPTIONAL_VARS = [
    "POS_ACCESS_TOKEN",
    "POS_WEBHOOK_SIGNATURE_KEY",
    "POS_WEBHOOK_NOTIFICATION_URL",
    "CELERY_BROKER_URL",
]

def check_python_version():
    """Проверка версии Python"""
    print("🔍 Checking Python version...")
    version = sys.version_info
    print(f"  Python {version.major}.{version.minor}.{version.micro}")

    if version.major == 3 and version.minor >= 9:
        print("  ✅ Python version OK")
        return True
    print("  ❌ Python 3.9+ required")
    return False

def check_env_file(path: str = ".env"):
    """Проверка .env файла"""
    print("\n🔍 Checking environment configuration...")

    env_file = Path(path)
    if not env_file.exists():
        print(f"  ❌ {path} file not found")
        return False

    values = dotenv_values(env_file)
    missing = [var for var in REQUIRED_VARS if not values.get(var)]
    for var in OPTIONAL_VARS:
        if not values.get(var):
            print(f"  ⚠️ {var} is not set")

    if missing:
        print(f"  ❌ Missing or empty variables: {', '.join(missing)}")
        return False
    print("  ✅ All required variables are set")
    return True

def check_settings():
    """Проверка, что настройки проходят валидацию"""
    print("\n🔍 Checking settings...")
    try:
        from shopsync.core.config import Settings
        current = Settings()
    except ValueError as e:
        print(f"  ❌ Invalid settings: {e}")
        return False

    print(f"  ✅ Conflict strategy: {current.CONFLICT_STRATEGY}")
    print(f"  ✅ Sync interval: {current.SYNC_INTERVAL_SECONDS}s")
    return True

def main():
    """Основная функция проверки"""
    print("=" * 60)
    print("SHOPSYNC ENVIRONMENT CHECK")
    print("=" * 60)

    checks = [
        ("Python Version", check_python_version()),
        ("Environment", check_env_file()),
        ("Settings", check_settings()),
    ]

    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)

    passed = sum(1 for _, result in checks if result)
    total = len(checks)

    for name, result in checks:
        status = "✅ PASS" if result else "❌ FAIL"
        print(f"{status} - {name}")

    print(f"\nPassed: {passed}/{total}")

    if passed != total:
        print(f"\n⚠️  {total - passed} check(s) failed. Please fix them before starting.")
        sys.exit(1)

if __name__ == "__main__":
    main()
