#!/usr/bin/env python3
"""
Image Resize 测试运行脚本

使用方法：
    python tests/run_tests.py              # 运行所有测试
    python tests/run_tests.py -k eviction  # 只运行包含 "eviction" 的测试
    python tests/run_tests.py --cov        # 输出覆盖率

快速开始：
    pip install -e ".[test]"
    cd backend
    python tests/run_tests.py
"""

import subprocess
import sys
import os
from pathlib import Path

# 切换到 backend 目录
backend_dir = Path(__file__).parent.parent
os.chdir(backend_dir)


def main():
    """运行测试"""
    cmd = [sys.executable, "-m", "pytest", "tests/"]
    args = sys.argv[1:]

    if not any(arg.startswith("-v") for arg in args):
        cmd.append("-v")

    if "--cov" in args:
        args.remove("--cov")
        cmd.extend(["--cov=image_resize", "--cov-report=term-missing"])

    cmd.extend(args)

    print(f"\n{'='*60}")
    print("Image Resize 测试")
    print(f"{'='*60}")
    print(f"运行命令: {' '.join(cmd)}")
    print(f"{'='*60}\n")

    result = subprocess.run(cmd)
    sys.exit(result.returncode)


if __name__ == "__main__":
    main()
