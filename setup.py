from setuptools import setup


with open("README.md") as fp:
    DESCRIPTION = fp.read()


headline = DESCRIPTION.split("\n", 1)[0].lstrip("# ").rstrip(".")


setup(
    name="flatproto",
    version="0.1",
    description=headline,
    long_description=DESCRIPTION,
    long_description_content_type="text/markdown",
    packages=["flatproto"],
    python_requires=">=3.6",
    license="MIT",
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["flatproto = flatproto.__main__:main"]},
    classifiers=[
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.6",
        "Programming Language :: Python :: 3.7",
    ],
)
