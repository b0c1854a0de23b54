"""
Falko loyalty and returns service entry point.
"""
import os
import sys
import traceback

print("[Falko] ========================================")
print("[Falko] Starting Falko loyalty & returns service")
print("[Falko] ========================================")

# Default to production for container deployment
config_name = os.getenv('FLASK_ENV', 'production')
print(f"[Falko] Config: {config_name}")
print(f"[Falko] PORT: {os.getenv('PORT', 'not set')}")
print(f"[Falko] DATABASE_URL: {'set' if os.getenv('DATABASE_URL') else 'NOT SET'}")

try:
    from falko import create_app
    app = create_app(config_name)
    print(f"[Falko] App created, {len(list(app.url_map.iter_rules()))} routes")
except Exception as e:
    print(f"[Falko] FATAL ERROR during app creation: {e}")
    traceback.print_exc()
    sys.exit(1)

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=os.getenv('FLASK_ENV') == 'development'
    )
